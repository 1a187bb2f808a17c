from __future__ import annotations

import os
from typing import Any, Optional

import httpx
import redis.asyncio as redis
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from .errors import (
    ConfigurationError, GatewayError, InvalidInput, NassrError,
    NetworkError, NotFound, ProtocolError,
)
from .helpers import new_order_id
from .infra import timings
from .infra.sql import open_sql
from .logging_config import get_logger, setup_logging
from .model import order as order_store
from .model import redeem as redeem_store
from .model.catalog import Catalog, CatalogItem
from .model.order import OrderStore
from .model.records import seed_codes
from .model.redeem import RedeemCodeStore
from .nowpayments import FIAT, SIG_HEADER, NowPayments, PaymentGateway

# ----------------------------
# Config & Constants
# ----------------------------
NOWPAYMENTS_API_KEY = os.environ.get("NOWPAYMENTS_API_KEY")
NOWPAYMENTS_IPN_SECRET = os.environ.get("NOWPAYMENTS_IPN_SECRET")
IS_PRODUCTION = os.environ.get("PRODUCTION") == "true"
NOWPAYMENTS_TIMEOUT = float(os.environ.get("NOWPAYMENTS_TIMEOUT", "10"))

STORE_BACKEND = os.environ.get("STORE_BACKEND", "memory").lower()
REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")
DATABASE_URL = os.environ.get("DATABASE_URL")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": f"Content-Type, {SIG_HEADER}",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}

setup_logging()
log = get_logger(__name__)

app = FastAPI(
    title="Nassr Cards",
    default_response_class=ORJSONResponse,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", SIG_HEADER],
)


# OPTIONS never reaches a route: empty 200 for any path
@app.middleware("http")
async def _options_short_circuit(request: Request, call_next):
    if request.method == "OPTIONS":
        return ORJSONResponse({}, status_code=200, headers=CORS_HEADERS)
    return await call_next(request)


# ----------------------------
# Dependencies
# ----------------------------
def get_catalog(request: Request) -> Catalog:
    return request.app.state.catalog


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_orders(request: Request) -> OrderStore:
    return request.app.state.orders


def get_codes(request: Request) -> RedeemCodeStore:
    return request.app.state.codes


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    log.info(
        "server_starting",
        mode="PRODUCTION" if IS_PRODUCTION else "SANDBOX",
        nowpayments_configured=bool(NOWPAYMENTS_API_KEY),
        store_backend=STORE_BACKEND,
    )
    if not NOWPAYMENTS_API_KEY:
        log.warning("nowpayments_api_key_missing")
    if not NOWPAYMENTS_IPN_SECRET:
        log.warning("ipn_secret_missing",
                    detail="IPN signatures are NOT verified")


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=NOWPAYMENTS_TIMEOUT,
        limits=httpx.Limits(max_connections=64, max_keepalive_connections=16),
    )
    app.state.gateway = NowPayments(
        NOWPAYMENTS_API_KEY,
        ipn_secret=NOWPAYMENTS_IPN_SECRET,
        production=IS_PRODUCTION,
        http=app.state.http,
        timeout=NOWPAYMENTS_TIMEOUT,
    )


@app.on_event("startup")
async def _stores_start():
    app.state.catalog = Catalog()
    r = sessions = gated = None

    if STORE_BACKEND == "redis":
        r = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )
        app.state.redis = r
    elif STORE_BACKEND == "pg":
        if not DATABASE_URL:
            raise RuntimeError("STORE_BACKEND=pg needs DATABASE_URL")
        sql = open_sql(DATABASE_URL)
        await sql.create_schema()
        app.state.sql = sql
        sessions, gated = sql.sessions, sql.gated

    app.state.orders = order_store.new_store(
        catalog=app.state.catalog, backend=STORE_BACKEND,
        r=r, sessions=sessions, gated=gated,
    )
    app.state.codes = redeem_store.new_store(
        backend=STORE_BACKEND, r=r, sessions=sessions, gated=gated,
    )
    await app.state.codes.seed(seed_codes())


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _stores_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None
    sql = getattr(app.state, "sql", None)
    if sql is not None:
        await sql.dispose()
        app.state.sql = None


@app.on_event("shutdown")
async def _timings_flush():
    timings.log_aggregates()


# ----------------------------
# Error rendering
# ----------------------------
@app.exception_handler(NassrError)
async def _nassr_error(request: Request, exc: NassrError):
    if exc.http_status >= 500:
        log.error("request_failed", path=request.url.path,
                  error=exc.error_code, message=exc.message)
    return ORJSONResponse(exc.to_dict(), status_code=exc.http_status)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    err = InvalidInput("Invalid request",
                       detail=jsonable_encoder(exc.errors()))
    return ORJSONResponse(err.to_dict(), status_code=err.http_status)


@app.exception_handler(Exception)
async def _unhandled_error(request: Request, exc: Exception):
    log.exception("unhandled_error", path=request.url.path)
    return ORJSONResponse(
        {"error": "internal_error", "message": "Internal server error"},
        status_code=500,
    )


# ----------------------------
# Helpers
# ----------------------------
def _base_url(request: Request) -> str:
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("host") or "localhost"
    return f"{proto}://{host}"


def _sellable_card(catalog: Catalog, player_id: Any) -> CatalogItem:
    card = None
    if isinstance(player_id, int) and not isinstance(player_id, bool):
        card = catalog.find_item(player_id)
    if card is None:
        raise NotFound("Card not found")
    if card.sold:
        raise InvalidInput("Card already sold")
    return card


def _description(card: CatalogItem) -> str:
    return f"Al-Nassr VIP Card: {card.name_en} (PSA 10)"


def _str_or_none(v: Any) -> Optional[str]:
    return None if v is None else str(v)


# ----------------------------
# Gateway passthrough
# ----------------------------
@app.get("/api/status")
async def api_status(gw: PaymentGateway = Depends(get_gateway)):
    # degraded but 200: the page shows the gateway message
    try:
        status = await gw.status()
    except (ConfigurationError, NetworkError, ProtocolError,
            GatewayError) as e:
        return {"server": "ok", "nowpayments": {"message": e.message}}
    return {"server": "ok", "nowpayments": status}


@app.get("/api/currencies")
async def api_currencies(gw: PaymentGateway = Depends(get_gateway)):
    return await gw.currencies()


@app.get("/api/min-amount/{currency}")
async def api_min_amount(currency: str,
                         gw: PaymentGateway = Depends(get_gateway)):
    return await gw.min_amount(currency)


@app.get("/api/estimate")
async def api_estimate(amount: str, currency: str,
                       gw: PaymentGateway = Depends(get_gateway)):
    return await gw.estimate(amount, currency)


# ----------------------------
# Catalog
# ----------------------------
@app.get("/api/cards")
async def api_cards(catalog: Catalog = Depends(get_catalog)):
    return [c.to_api() for c in catalog.list_items()]


# ----------------------------
# Checkout: payment (pay to address) and invoice (hosted page)
# ----------------------------
@app.post("/api/create-payment")
async def create_payment(
    payload: dict,
    request: Request,
    catalog: Catalog = Depends(get_catalog),
    gw: PaymentGateway = Depends(get_gateway),
    orders: OrderStore = Depends(get_orders),
):
    card = _sellable_card(catalog, payload.get("playerId"))
    currency = payload.get("currency")
    customer = payload.get("customer")
    if not currency:
        raise InvalidInput("Currency is required")
    if not isinstance(customer, dict) or not customer.get("email"):
        raise InvalidInput("Customer email is required")

    order_id = new_order_id(card.id)
    base = _base_url(request)
    payment = await gw.create_payment({
        "price_amount": card.price,
        "price_currency": FIAT,
        "pay_currency": currency,
        "order_id": order_id,
        "order_description": _description(card),
        "ipn_callback_url": f"{base}/api/ipn",
    })

    order = await orders.create_order({
        "player_id": card.id,
        "player_name": card.name_en,
        "price_amount": card.price,
        "pay_currency": currency,
        "pay_amount": payment.get("pay_amount"),
        "pay_address": payment.get("pay_address"),
        "payment_id": _str_or_none(payment.get("payment_id")),
        "status": payment.get("payment_status") or "waiting",
        "redeem_option": payload.get("redeemOption"),
        "customer": customer,
    }, order_id=order_id)
    log.info("order_created", order_id=order.order_id, card=card.name_en,
             pay_amount=order.pay_amount, pay_currency=currency)

    return {
        "success": True,
        "orderId": order.order_id,
        "paymentId": order.payment_id,
        "payAddress": order.pay_address,
        "payAmount": order.pay_amount,
        "payCurrency": currency,
        "status": order.status,
        "validUntil": payment.get("expiration_estimate_date"),
    }


@app.post("/api/create-invoice")
async def create_invoice(
    payload: dict,
    request: Request,
    catalog: Catalog = Depends(get_catalog),
    gw: PaymentGateway = Depends(get_gateway),
    orders: OrderStore = Depends(get_orders),
):
    card = _sellable_card(catalog, payload.get("playerId"))
    customer = payload.get("customer")
    if customer is None:
        customer = {}
    elif not isinstance(customer, dict):
        raise InvalidInput("Customer must be an object")

    order_id = new_order_id(card.id)
    base = _base_url(request)
    invoice = await gw.create_invoice({
        "price_amount": card.price,
        "price_currency": FIAT,
        "order_id": order_id,
        "order_description": _description(card),
        "ipn_callback_url": f"{base}/api/ipn",
        "success_url": f"{base}/?payment=success&order={order_id}",
        "cancel_url": f"{base}/?payment=cancelled",
    })

    order = await orders.create_order({
        "player_id": card.id,
        "player_name": card.name_en,
        "price_amount": card.price,
        "invoice_id": _str_or_none(invoice.get("id")),
        "invoice_url": invoice.get("invoice_url"),
        "status": "waiting",
        "redeem_option": payload.get("redeemOption"),
        "customer": customer,
    }, order_id=order_id)
    log.info("invoice_created", order_id=order.order_id, card=card.name_en,
             invoice_id=order.invoice_id)

    return {
        "success": True,
        "orderId": order.order_id,
        "invoiceId": order.invoice_id,
        "invoiceUrl": order.invoice_url,
    }


@app.get("/api/payment-status/{payment_id}")
async def payment_status(payment_id: str,
                         gw: PaymentGateway = Depends(get_gateway)):
    data = await gw.payment_status(payment_id)
    return {
        "paymentId": data.get("payment_id"),
        "status": data.get("payment_status"),
        "payAmount": data.get("pay_amount"),
        "actuallyPaid": data.get("actually_paid"),
        "payCurrency": data.get("pay_currency"),
    }


# ----------------------------
# IPN webhook
# ----------------------------
@app.post("/api/ipn")
async def ipn_webhook(
    request: Request,
    gw: PaymentGateway = Depends(get_gateway),
    orders: OrderStore = Depends(get_orders),
):
    raw = await request.body()
    payload = gw.verify_ipn(raw, request.headers)

    order_id = payload.get("order_id")
    status = payload.get("payment_status")
    log.info("ipn_received", order_id=order_id, status=status,
             actually_paid=payload.get("actually_paid"),
             pay_amount=payload.get("pay_amount"))

    if not order_id or not status:
        log.warning("ipn_incomplete", order_id=order_id, status=status)
        return {"success": True}

    # unknown orders are acknowledged too, or the gateway keeps retrying
    async with timings.timeit("orders.ipn_update"):
        await orders.apply_webhook_update(
            str(order_id), str(status), payload.get("actually_paid")
        )
    return {"success": True}


# ----------------------------
# Orders
# ----------------------------
@app.get("/api/order/{order_id}")
async def get_order(order_id: str, orders: OrderStore = Depends(get_orders)):
    order = await orders.get_order(order_id)
    if order is None:
        raise NotFound("Order not found")
    return order.to_api()


# ----------------------------
# Redeem
# ----------------------------
@app.post("/api/redeem")
async def redeem(payload: dict, codes: RedeemCodeStore = Depends(get_codes)):
    code = payload.get("code")
    address = payload.get("lightningAddress")
    if (not isinstance(code, str) or not code.strip()
            or not isinstance(address, str) or not address.strip()):
        raise InvalidInput(
            "رمز الاسترداد وعنوان محفظة Lightning مطلوبان"
        )

    async with timings.timeit("codes.redeem"):
        outcome = await codes.redeem(code, address.strip(),
                                     payload.get("email"))

    return {
        "success": True,
        "message": f"تم إرسال {outcome.sats:,} ساتوشي إلى محفظتك بنجاح!",
        "playerName": outcome.player_name,
        "sats": outcome.sats,
        "lightningAddress": outcome.lightning_address,
        "txId": outcome.tx_id,
        "redeemedAt": outcome.redeemed_at,
    }


@app.get("/api/redeem/{code}")
async def redeem_info(code: str, codes: RedeemCodeStore = Depends(get_codes)):
    rec = await codes.lookup(code)
    if rec is None:
        raise NotFound("Code not found")
    return {
        "playerName": rec.player_name,
        "sats": rec.sats,
        "redeemed": rec.redeemed,
    }


# ----------------------------
# Diagnostics
# ----------------------------
@app.get("/api/timings")
async def api_timings():
    return {"items": timings.aggregates()}


@app.get("/health")
async def health():
    return {"status": "ok"}
