"""
Verification Service — Verification Code Authority
Issues one-time delivery codes per order item and validates scans.

A scan resolves to exactly one of:
    verified           authentic, not yet delivered
    invalid            unknown code, likely counterfeit
    tampered           product's blockchain anchor no longer matches the snapshot
    already_delivered  code was already used to confirm a delivery
    revoked / expired
"""

import hashlib
import json
import logging
import secrets
from datetime import timedelta

from src.errors import NotFoundError
from src.extensions import db
from src.models.order import Order
from src.models.verification import VerificationAttempt, VerificationCode
from src.services import delivery_service
from src.utils import as_utc, isoformat, time_ago, to_float, utcnow

logger = logging.getLogger(__name__)

CODE_VALIDITY = timedelta(days=365)
SCAN_WINDOW = timedelta(hours=24)
MAX_SCANS_PER_WINDOW = 10
SCAN_HISTORY_LIMIT = 10


class VerificationFailed(Exception):
    """A scan or confirmation that must be reported as a negative outcome."""

    def __init__(self, status, message, http_status=400, **payload):
        super().__init__(message)
        self.status = status
        self.message = message
        self.http_status = http_status
        self.payload = payload

    def to_dict(self):
        body = {"success": False, "status": self.status, "message": self.message}
        body.update(self.payload)
        return body


def _internal_hash(public_code, order_id, product_id, salt, issued_at):
    data = f"{public_code}:{order_id}:{product_id}:{salt}:{int(as_utc(issued_at).timestamp() * 1000)}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest().upper()


def issue_codes_for_order(order):
    """Create one code per distinct product in the order. The caller commits."""
    existing = {code.product_id for code in order.authentication_codes}
    issued = []
    now = utcnow()
    customer_name = order.ship_full_name or "Customer"

    for item in order.items:
        if item.product_id in existing:
            continue
        existing.add(item.product_id)

        product = item.product
        public_code = secrets.token_hex(32).upper()
        salt = secrets.token_hex(16)
        code = VerificationCode(
            order_id=order.order_id,
            product_id=item.product_id,
            public_code=public_code,
            internal_hash=_internal_hash(public_code, order.order_id, item.product_id, salt, now),
            security_salt=salt,
            issued_at=now,
            snapshot_title=item.title,
            snapshot_price=item.price,
            snapshot_artisan=(product.artisan.name if product and product.artisan else "") or "Unknown",
            snapshot_ipfs_hash=(product.ipfs_metadata_hash if product else "") or "",
            snapshot_blockchain_txn=(product.blockchain_txn if product else "") or "",
            snapshot_order_date=order.created_at or now,
            snapshot_order_total=order.total,
            snapshot_customer_name=customer_name,
            qr_code_data=json.dumps({"code": public_code, "type": "CultureKart_Authenticity", "version": "1.0"}),
            expires_at=now + CODE_VALIDITY,
        )
        db.session.add(code)
        order.authentication_codes.append(code)
        issued.append(code)

    if issued:
        logger.info("Issued %d verification code(s) for order %s", len(issued), order.order_id)
    return issued


def revoke_codes_for_order(order):
    (
        VerificationCode.query.filter(
            VerificationCode.order_id == order.order_id,
            VerificationCode.delivery_confirmed.is_(False),
        ).update({VerificationCode.verification_status: "revoked"}, synchronize_session=False)
    )


def _find(public_code):
    return VerificationCode.query.filter_by(public_code=(public_code or "").strip().upper()).first()


def _record_attempt(code, status, meta):
    code.attempts.append(
        VerificationAttempt(
            timestamp=utcnow(),
            ip_address=meta.get("ip_address") or "unknown",
            user_agent=meta.get("user_agent") or "unknown",
            location=meta.get("location") or "unknown",
            status=status,
        )
    )


def _anchor_tampered(code):
    """Any difference between the product's current anchor and the issue-time snapshot."""
    snapshot = (code.snapshot_blockchain_txn or "", code.snapshot_ipfs_hash or "")
    product = code.product
    if product is None:
        return any(snapshot)
    return (product.blockchain_txn or "", product.ipfs_metadata_hash or "") != snapshot


def _flag(code, note):
    code.is_suspicious = True
    code.suspicious_notes = note
    logger.warning("Verification code %s flagged: %s", code.code_id, note)


def _fail_if_tampered(code, meta):
    if _anchor_tampered(code):
        _record_attempt(code, "suspicious", meta)
        _flag(code, "Blockchain hash mismatch - possible counterfeit attempt")
        db.session.commit()
        raise VerificationFailed(
            "tampered",
            "SECURITY ALERT: Blockchain hash mismatch detected. This QR code may have been "
            "tampered with or copied onto a counterfeit product.",
        )


def _fail_if_unusable(code):
    if code.verification_status == "revoked":
        raise VerificationFailed("revoked", "This verification code has been revoked.")

    expires_at = as_utc(code.expires_at)
    if expires_at and expires_at < utcnow() and not code.delivery_confirmed:
        code.verification_status = "expired"
        db.session.commit()
        raise VerificationFailed("expired", "This verification code has expired.")


def _hours_since(dt):
    return (utcnow() - as_utc(dt)).total_seconds() / 3600


def verify_code(public_code, meta):
    """
    Look up a scanned code and return the authentic-product payload.

    Raises:
        VerificationFailed: any of the negative outcomes listed in the module docstring
    """
    code = _find(public_code)
    if code is None:
        raise VerificationFailed(
            "invalid", "Invalid verification code. This product may be counterfeit.", http_status=404
        )

    _fail_if_tampered(code, meta)
    _fail_if_unusable(code)

    if code.delivery_confirmed:
        hours = _hours_since(code.delivery_confirmed_at)
        _record_attempt(code, "suspicious", meta)
        _flag(
            code,
            f"QR code scanned again {hours:.1f} hours after delivery confirmation - possible package swap/reuse",
        )
        db.session.commit()
        raise VerificationFailed(
            "already_delivered",
            f"SECURITY ALERT: This QR code was already used for delivery confirmation {hours:.1f} hours ago. "
            "Someone may have copied this QR code onto a different package.",
            deliveryInfo={
                "originalDeliveryTime": isoformat(code.delivery_confirmed_at),
                "originalLocation": code.delivery_location,
            },
        )

    now = utcnow()
    recent = [a for a in code.attempts if as_utc(a.timestamp) > now - SCAN_WINDOW]
    if len(recent) >= MAX_SCANS_PER_WINDOW:
        _flag(code, "Too many verification attempts in 24 hours")

    _record_attempt(code, "success", meta)
    if not code.first_verified_at:
        code.first_verified_at = now
    if code.verification_status == "active":
        code.verification_status = "verified"
    db.session.commit()

    return _verified_payload(code)


def _verified_payload(code):
    product = code.product
    txn = code.snapshot_blockchain_txn or ""
    scan_history = [
        {
            "timestamp": isoformat(a.timestamp),
            "location": a.location,
            "status": a.status,
            "timeAgo": time_ago(a.timestamp),
        }
        for a in reversed(code.attempts[-SCAN_HISTORY_LIMIT:])
    ]
    return {
        "success": True,
        "status": "verified",
        "message": "Authentic CultureKart product verified successfully!",
        "productInfo": {
            "title": code.snapshot_title,
            "category": product.category if product else None,
            "artisan": code.snapshot_artisan,
            "orderDate": isoformat(code.snapshot_order_date),
            "price": to_float(code.snapshot_price),
            "image": product.image if product else None,
        },
        "verificationInfo": {
            "firstVerified": isoformat(code.first_verified_at),
            "totalVerifications": len(code.attempts),
            "isSuspicious": code.is_suspicious,
            "orderNumber": code.order.order_number if code.order else None,
            "isDelivered": code.delivery_confirmed,
            "deliveredAt": isoformat(code.delivery_confirmed_at),
            "deliveryLocation": code.delivery_location,
        },
        "scanHistory": scan_history,
        "blockchainInfo": {
            "hasBlockchainRecord": bool(txn),
            "transactionHash": txn or None,
            "ipfsHash": code.snapshot_ipfs_hash or None,
            "blockchainVerified": txn.startswith("0x") and len(txn) == 66,
            "hashMatches": True,
        },
    }


def lock_code(code, meta, now):
    """
    Flip a code to delivered exactly once.
    Returns False when another request already confirmed it.
    """
    updated = VerificationCode.query.filter(
        VerificationCode.code_id == code.code_id,
        VerificationCode.delivery_confirmed.is_(False),
    ).update(
        {
            VerificationCode.delivery_confirmed: True,
            VerificationCode.delivery_confirmed_at: now,
            VerificationCode.delivery_confirmed_by: meta.get("ip_address") or "unknown",
            VerificationCode.delivery_location: meta.get("location") or "unknown",
            VerificationCode.device_fingerprint: meta.get("device_fingerprint") or "",
            VerificationCode.verification_status: "delivered",
        },
        synchronize_session=False,
    )
    return updated == 1


def _reject_reuse(code, meta):
    db.session.rollback()
    code = db.session.get(VerificationCode, code.code_id)
    _record_attempt(code, "suspicious", meta)
    _flag(code, "Second delivery confirmation attempt on an already delivered code")
    db.session.commit()
    raise VerificationFailed(
        "already_delivered",
        "Delivery already confirmed",
        http_status=409,
        alreadyConfirmedAt=isoformat(code.delivery_confirmed_at),
    )


def confirm_delivery(public_code, meta):
    """
    One-time delivery confirmation for a scanned code. Commits.

    The order moves to delivered once every code on it is confirmed.

    Raises:
        VerificationFailed: invalid, tampered, revoked, expired or already_delivered
    """
    code = _find(public_code)
    if code is None:
        raise VerificationFailed("invalid", "Invalid verification code", http_status=404)

    if code.delivery_confirmed:
        _reject_reuse(code, meta)

    _fail_if_tampered(code, meta)
    _fail_if_unusable(code)

    # Confirmations of one order's codes are serialized on its row, so the
    # count of unconfirmed codes below sees every earlier confirmation
    order = Order.query.filter_by(order_id=code.order_id).with_for_update().populate_existing().one()
    if order.status in ("cancelled", "refunded", "failed"):
        message = f"Order is {order.status}; delivery cannot be confirmed."
        db.session.rollback()
        raise VerificationFailed("revoked", message)

    now = utcnow()
    if not lock_code(code, meta, now):
        _reject_reuse(code, meta)

    db.session.refresh(code)
    remaining = VerificationCode.query.filter(
        VerificationCode.order_id == order.order_id,
        VerificationCode.delivery_confirmed.is_(False),
    ).count()

    if remaining == 0 and order.status != "delivered":
        delivery_service.mark_order_delivered(order, confirmed_by=meta.get("ip_address") or "unknown", now=now)

    db.session.commit()
    logger.info("Delivery confirmed for code %s (order %s)", code.code_id, order.order_id)

    return {
        "success": True,
        "message": "Delivery confirmed successfully",
        "confirmedAt": isoformat(code.delivery_confirmed_at),
        "order": {"id": str(order.order_id), "status": order.status},
        "payment": {
            "artisanPayout": to_float(order.artisan_payout),
            "platformCommission": to_float(order.platform_commission),
            "escrowReleased": order.escrow_released,
        },
    }


def get_qr_data(public_code):
    code = _find(public_code)
    if code is None:
        raise NotFoundError("Verification code not found")
    return {"success": True, "qrCodeUrl": code.qr_code_url, "qrCodeData": code.qr_code_data}

