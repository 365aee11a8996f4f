from decimal import Decimal
from afya import create_app, db
from afya.auth.models import User
from afya.therapists.models import Therapist, SESSION_TYPES
from afya.payment.poller import PaymentPoller, PaymentSnapshot, SUCCESS
from afya.payment.store import PaymentStore
import click

app = create_app()


@app.cli.command("create-admin")
@click.option("--email", required=True, help="Admin email")
@click.option("--password", required=True, help="Admin password")
@click.option("--name", default="Administrator", help="Full name if creating new user")
def create_admin(email: str, password: str, name: str) -> None:
    """Create or update an admin user."""
    user = User.query.filter_by(email=email.lower()).first()
    if user is None:
        user = User(full_name=name, email=email.lower())
    user.set_password(password)
    user.role = 'admin'
    db.session.add(user)
    db.session.commit()
    click.echo(f"Admin ready: {user.email} role={user.role}")


@app.cli.command("create-therapist")
@click.option("--email", required=True, help="Therapist login email")
@click.option("--password", required=True, help="Therapist password")
@click.option("--name", required=True, help="Full name")
@click.option("--license", "license_number", required=True, help="Practising licence number")
@click.option("--specialization", default="Counselling Psychology")
@click.option("--rate", type=int, default=3000, help="Hourly rate in KES")
def create_therapist(email, password, name, license_number, specialization, rate):
    """Create a verified therapist account."""
    user = User(full_name=name, email=email.lower(), role='therapist')
    user.set_password(password)
    therapist = Therapist(
        user=user,
        license_number=license_number,
        specialization=specialization,
        hourly_rate=Decimal(rate),
        session_types=list(SESSION_TYPES),
        is_verified=True,
    )
    db.session.add_all([user, therapist])
    db.session.commit()
    click.echo(f"Therapist ready: {user.email} id={therapist.id}")


@app.cli.command("poll-payment")
@click.argument("payment_id")
@click.option("--interval", type=int, default=None, help="Seconds between reads")
@click.option("--attempts", type=int, default=None, help="Reads before giving up")
def poll_payment(payment_id, interval, attempts):
    """Watch a payment until the callback settles it or polling times out."""
    store = PaymentStore()

    def fetch(pid):
        # Each read must see commits made by the callback worker
        db.session.expire_all()
        return PaymentSnapshot.from_payment(store.get(pid))

    poller = PaymentPoller(
        payment_id,
        fetch,
        interval=app.config['PAYMENT_POLL_INTERVAL'] if interval is None else interval,
        max_attempts=app.config['PAYMENT_POLL_MAX_ATTEMPTS'] if attempts is None else attempts,
    )
    poller.arm(background=False)
    if poller.state == SUCCESS:
        click.echo(f"Payment {payment_id} completed, receipt {poller.snapshot.mpesa_receipt}")
    else:
        click.echo(f"Payment {payment_id} not completed: {poller.error.message}")


if __name__ == '__main__':
    app.run(debug=True)
