from flask import Blueprint, request, jsonify, current_app, Response, stream_with_context, send_file
from flask_login import login_required, current_user
import json
import queue
import time
from afya.errors import NotFoundError, ValidationError
from afya.booking.services import BookingStore
from afya.notifications.notification_service import NotificationService
from afya.payment.models import Payment
from afya.payment.store import PaymentStore
from afya.payment.initiation import PaymentInitiationFlow, validate_amount
from afya.payment.callback import CallbackReconciler
from afya.payment.receipt import render_receipt

payment_bp = Blueprint('payment', __name__, url_prefix='/payments')


def _initiation_flow():
    return PaymentInitiationFlow(
        gateway=current_app.extensions['mpesa'],
        payments=PaymentStore(),
        bookings=BookingStore(),
    )


def _owned_payment(payment_id):
    payment = PaymentStore().get(payment_id)
    if payment.user_id != current_user.id and not current_user.is_admin:
        raise NotFoundError(f'Payment {payment_id} not found')
    return payment


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Expected a JSON object')
    return data


def _initiation_response(result):
    if result.success:
        return jsonify(result.to_dict())
    return jsonify(result.to_dict()), 400


@payment_bp.route('/initiate', methods=['POST'])
@login_required
def initiate_payment():
    """Create a pending payment for an appointment"""
    data = _json_body()
    booking_id = data.get('booking_id')
    if booking_id is None:
        raise ValidationError('booking_id is required')

    flow = _initiation_flow()
    amount = data.get('amount')
    if amount is None:
        amount = flow.bookings.get(booking_id).amount
    payment = flow.create(current_user.id, booking_id, amount, data.get('phone'))

    return jsonify({
        'success': True,
        'payment_id': payment.id,
        'amount': str(payment.amount),
        'phone': payment.phone,
        'status': payment.status,
    }), 201


@payment_bp.route('/stk-push', methods=['POST'])
@login_required
def stk_push():
    """Send the STK push for a payment created through /payments/initiate"""
    data = _json_body()
    account_reference = data.get('account_reference')
    if not data.get('phone') or not data.get('amount') or not account_reference:
        raise ValidationError('Missing required fields')

    payment = _owned_payment(account_reference)
    if data['phone'] != payment.phone:
        raise ValidationError('Phone number does not match the payment')
    if validate_amount(data['amount']) != payment.amount:
        raise ValidationError('Amount does not match the payment')

    result = _initiation_flow().submit(payment, description=data.get('transaction_desc'))
    return _initiation_response(result)


@payment_bp.route('/mpesa', methods=['POST'])
@login_required
def process_mpesa():
    """Create a payment and send the STK push in one call"""
    data = _json_body()
    booking_id = data.get('booking_id')
    if booking_id is None:
        raise ValidationError('booking_id is required')

    flow = _initiation_flow()
    amount = data.get('amount')
    if amount is None:
        amount = flow.bookings.get(booking_id).amount
    result = flow.start(
        current_user.id,
        booking_id,
        amount,
        data.get('phone'),
        description=data.get('transaction_desc'),
    )
    return _initiation_response(result)


@payment_bp.route('/callback/mpesa', methods=['POST'])
def mpesa_callback():
    """Handle M-Pesa callback"""
    data = request.get_json(silent=True)
    current_app.logger.info(f'M-Pesa callback received: {json.dumps(data)}')

    reconciler = CallbackReconciler(
        payments=PaymentStore(),
        bookings=BookingStore(),
        events=current_app.extensions['payment_events'],
        cache=current_app.extensions['payment_cache'],
        notify_confirmed=NotificationService.notify_appointment_confirmed,
    )
    outcome = reconciler.handle(data)
    return jsonify(outcome.body), outcome.status_code


@payment_bp.route('/<payment_id>/status', methods=['GET'])
@login_required
def check_payment_status(payment_id):
    """Current state of a payment; read-only"""
    cache = current_app.extensions['payment_cache']
    cached = cache.get_status(payment_id)
    if cached and (cached['user_id'] == current_user.id or current_user.is_admin):
        return jsonify({'success': True, 'payment': cached})

    payment = _owned_payment(payment_id)
    snapshot = payment.to_dict()
    cache.set_status(payment.id, snapshot)
    return jsonify({'success': True, 'payment': snapshot})


@payment_bp.route('/<payment_id>/stream')
@login_required
def stream_payment_status(payment_id):
    """Server-sent events for one payment, ending once it is terminal"""
    broker = current_app.extensions['payment_events']
    # Subscribe before reading the row so a callback landing in between is not lost
    q = broker.subscribe(payment_id)
    try:
        payment = _owned_payment(payment_id)
    except NotFoundError:
        broker.unsubscribe(payment_id, q)
        raise

    initial = {
        'type': 'payment_status',
        'payment_id': payment.id,
        'status': payment.status,
        'mpesa_receipt': payment.mpesa_receipt,
        'result_desc': payment.result_desc,
    }
    keepalive = current_app.config['PAYMENT_STREAM_KEEPALIVE']
    # Same window the client polls for; past it the client has already given up
    deadline = time.monotonic() + \
        current_app.config['PAYMENT_POLL_INTERVAL'] * current_app.config['PAYMENT_POLL_MAX_ATTEMPTS']

    def event_stream():
        try:
            yield f"data: {json.dumps(initial)}\n\n"
            if initial['status'] != 'pending':
                return
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    timeout = {'type': 'payment_timeout', 'payment_id': initial['payment_id'], 'status': 'pending'}
                    yield f"event: timeout\ndata: {json.dumps(timeout)}\n\n"
                    return
                try:
                    data = q.get(timeout=min(keepalive, remaining))
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {data}\n\n"
                if json.loads(data).get('status') != 'pending':
                    return
        finally:
            broker.unsubscribe(payment_id, q)

    headers = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    return Response(stream_with_context(event_stream()), mimetype='text/event-stream', headers=headers)


@payment_bp.route('/<payment_id>', methods=['GET'])
@login_required
def get_payment(payment_id):
    """Get payment details"""
    payment = _owned_payment(payment_id)
    return jsonify({'success': True, 'payment': payment.to_dict()})


@payment_bp.route('/<payment_id>/receipt.pdf', methods=['GET'])
@login_required
def download_receipt(payment_id):
    payment = _owned_payment(payment_id)
    if payment.status != 'completed':
        raise ValidationError('Receipts are only available for completed payments')

    buffer = render_receipt(payment, payment.appointment)
    filename = f"receipt_{payment.mpesa_receipt}.pdf"
    return send_file(buffer, as_attachment=True, download_name=filename, mimetype='application/pdf')


@payment_bp.route('/history', methods=['GET'])
@login_required
def payment_history():
    """Get payment history for the current user"""
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', 10, type=int)

    query = Payment.query.filter_by(user_id=current_user.id)
    payments = query.order_by(Payment.created_at.desc()).paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'success': True,
        'payments': [p.to_dict() for p in payments.items],
        'pagination': {
            'page': payments.page,
            'per_page': payments.per_page,
            'total': payments.total,
            'pages': payments.pages
        }
    })
