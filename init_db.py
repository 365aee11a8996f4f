from decimal import Decimal
from afya import create_app, db
from afya.auth.models import User
from afya.therapists.models import Therapist


def init_db():
    app = create_app()
    with app.app_context():
        db.create_all()

        if User.query.filter_by(email='admin@afyaconnect.co.ke').first():
            print("Database already initialized.")
            return

        admin = User(full_name='Administrator', email='admin@afyaconnect.co.ke',
                     phone='254700000000', role='admin')
        admin.set_password('admin123')

        therapist_user = User(full_name='Dr. Wanjiru Kamau', email='wanjiru@afyaconnect.co.ke',
                              phone='254700000001', role='therapist')
        therapist_user.set_password('therapist123')
        therapist = Therapist(
            user=therapist_user,
            license_number='KCPB-0001',
            specialization='Anxiety and Depression',
            bio='Cognitive behavioural therapist with a focus on young adults.',
            years_experience=8,
            hourly_rate=Decimal('3000'),
            session_types=['chat', 'video', 'audio'],
            is_verified=True,
        )

        patient = User(full_name='Demo Patient', email='patient@afyaconnect.co.ke',
                       phone='254712345678', role='patient')
        patient.set_password('patient123')

        db.session.add_all([admin, therapist_user, therapist, patient])
        db.session.commit()

        print("Database initialized successfully!")
        print("Admin: admin@afyaconnect.co.ke / admin123")
        print("Therapist: wanjiru@afyaconnect.co.ke / therapist123")
        print("Patient: patient@afyaconnect.co.ke / patient123")


if __name__ == '__main__':
    init_db()
