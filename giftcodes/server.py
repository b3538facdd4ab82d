from __future__ import annotations

import logging
import os
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.responses import HTMLResponse, ORJSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from jinja2 import DictLoader, Environment, select_autoescape
from starlette.status import HTTP_303_SEE_OTHER

from .errors import GiftCodeError, NotFoundError, ValidationError
from .gateway import ConfirmationGateway, ProofFile, TransitionResult
from .helpers import format_amount
from .infra.sql import make_async_engine
from .infra.timings import log_summary, snapshot, timeit
from .model import Base
from .model.inventory import BACKEND as STORE_BACKEND
from .model.inventory import new_store as new_inventory_store
from .model.orders import new_store as new_order_store
from .model.profiles import new_store as new_profile_directory
from .model.states import ACTION_CONFIRM, ORDER_STATUSES
from .notify import Notifier, NullNotifier, TelegramNotifier
from .storage import LocalProofStorage

logger = logging.getLogger(__name__)

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./giftcodes.db")
PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "")
TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID = os.environ.get("TELEGRAM_CHAT_ID", "")
PROOF_DIR = os.environ.get("PROOF_DIR", "./proofs")
PROOF_URL_PREFIX = os.environ.get("PROOF_URL_PREFIX", "/proofs")
MIN_STOCK_FOR_PURCHASE = int(os.environ.get("MIN_STOCK_FOR_PURCHASE", "1"))
CLAIM_MAX_ATTEMPTS = int(os.environ.get("CLAIM_MAX_ATTEMPTS", "50"))
HTTP_TIMEOUT = float(os.environ.get("HTTP_TIMEOUT", "5.0"))

RESULT_PATH = "/admin/telegram-result"

engine, SessionAsync = make_async_engine(DATABASE_URL)

templates = Environment(
    loader=DictLoader({
        "telegram_result.html": r"""
<html>
  <head><meta charset='utf-8'><title>Payment review</title></head>
  <body style="font-family:system-ui;margin:2rem">
    {% if error %}
      <h3>❌ Could not process the request</h3>
      <p>{{ error }}</p>
    {% elif success == "confirmed" %}
      <h3>✅ Payment confirmed</h3>
      <p>A code was assigned{% if product %} for <strong>{{ product }}</strong>{% endif %}
         {% if amount %} (${{ amount }}){% endif %}.</p>
    {% elif success == "rejected" %}
      <h3>Payment rejected</h3>
      <p>The buyer will see the purchase as rejected.</p>
    {% else %}
      <p>Nothing to show.</p>
    {% endif %}
  </body>
</html>
""",
    }),
    autoescape=select_autoescape(["html"]),
)

app = FastAPI(
    title="GiftCodes",
    default_response_class=ORJSONResponse,
)
app.mount(PROOF_URL_PREFIX,
          StaticFiles(directory=PROOF_DIR, check_dir=False), name="proofs")


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    print('\n' * 2)
    print('=' * 50)
    print('GiftCodes is starting up...')
    print(f'   - Store backend: {STORE_BACKEND}')
    print(f'   - Telegram alerts: '
          f'{"on" if TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID else "off"}')
    print('=' * 50)
    print('\n' * 2)


@app.on_event("startup")
async def _db_init():
    if STORE_BACKEND == "sql":
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(timeout=HTTP_TIMEOUT)


@app.on_event("startup")
async def _gateway_start():
    sessions = SessionAsync if STORE_BACKEND == "sql" else None
    notifier: Notifier = NullNotifier()
    if TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID:
        notifier = TelegramNotifier(app.state.http, TELEGRAM_BOT_TOKEN,
                                    TELEGRAM_CHAT_ID)
    app.state.gateway = ConfirmationGateway(
        inventory=new_inventory_store(
            sessions=sessions, max_claim_attempts=CLAIM_MAX_ATTEMPTS
        ),
        orders=new_order_store(sessions=sessions),
        profiles=new_profile_directory(sessions=sessions),
        storage=LocalProofStorage(PROOF_DIR, PROOF_URL_PREFIX),
        notifier=notifier,
        min_stock=MIN_STOCK_FOR_PURCHASE,
    )


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _db_stop():
    log_summary()
    await engine.dispose()


# ----------------------------
# Helpers
# ----------------------------
def get_gateway(request: Request) -> ConfirmationGateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise RuntimeError("gateway not initialized")
    return gateway


def base_url_for(request: Request) -> str:
    return PUBLIC_BASE_URL or str(request.base_url)


def result_redirect(**params) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    return RedirectResponse(url=f"{RESULT_PATH}?{query}",
                            status_code=HTTP_303_SEE_OTHER)


@app.exception_handler(GiftCodeError)
async def _domain_error(request: Request, exc: GiftCodeError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s", request.method, request.url.path,
                     exc.message)
    return ORJSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception):
    # full detail stays in the server log
    logger.exception("unhandled error on %s %s", request.method,
                     request.url.path)
    return ORJSONResponse({"error": "internal server error"},
                          status_code=500)


# ----------------------------
# Buyer API
# ----------------------------
@app.post("/api/purchases")
async def create_purchase(
    request: Request,
    product_id: Optional[str] = Form(None),
    amount: Optional[str] = Form(None),
    user_id: Optional[str] = Form(None),
    depositor_name: Optional[str] = Form(None),
    payment_proof: Optional[UploadFile] = File(None),
    gw: ConfirmationGateway = Depends(get_gateway),
):
    proof = None
    if payment_proof is not None:
        proof = ProofFile(
            filename=payment_proof.filename or "",
            data=await payment_proof.read(),
            content_type=payment_proof.content_type,
        )
    async with timeit("gateway.create_purchase"):
        order = await gw.create_purchase(
            product_id, amount, user_id, depositor_name, proof,
            base_url_for(request),
        )
    return {
        "success": True,
        "order_id": order.id,
        "status": order.status,
        "message": "Purchase registered. An admin will review your "
                   "payment shortly.",
    }


@app.post("/api/reveal-code")
async def reveal_code(payload: dict,
                      gw: ConfirmationGateway = Depends(get_gateway)):
    async with timeit("gateway.reveal_code"):
        res = await gw.reveal_code(payload.get("purchase_id"),
                                   payload.get("user_id"))
    return {
        "success": True,
        "code": res.code,
        "already_revealed": res.already_revealed,
    }


@app.post("/api/cancel-purchase")
async def cancel_purchase(payload: dict,
                          gw: ConfirmationGateway = Depends(get_gateway)):
    async with timeit("gateway.cancel_purchase"):
        order = await gw.cancel_purchase(payload.get("purchase_id"),
                                         payload.get("user_id"),
                                         payload.get("reason"))
    return {
        "success": True,
        "status": order.status,
        "message": "Refund request sent. The admin has been notified.",
    }


@app.get("/api/orders/{order_id}")
async def get_order(
    order_id: str,
    user_id: Optional[str] = None,
    x_admin_id: Optional[str] = Header(None),
    gw: ConfirmationGateway = Depends(get_gateway),
):
    order = await gw.get_order(order_id, user_id=user_id, admin_id=x_admin_id)
    return order.public_view()


@app.get("/api/inventory/{product_id}")
async def get_inventory(product_id: str,
                        gw: ConfirmationGateway = Depends(get_gateway)):
    inv = await gw.inventory.inventory(product_id)
    if inv is None:
        raise NotFoundError("product not found", {"product_id": product_id})
    return inv


# ----------------------------
# Operator API: direct action
# ----------------------------
@app.post("/api/confirm-payment")
async def confirm_payment(payload: dict,
                          gw: ConfirmationGateway = Depends(get_gateway)):
    async with timeit("gateway.confirm_or_reject"):
        res = await gw.confirm_or_reject(
            payload.get("purchase_id"),
            payload.get("action"),
            payload.get("admin_id"),
            payload.get("rejection_reason"),
        )
    if res.action == ACTION_CONFIRM:
        return {
            "success": True,
            "message": "Payment confirmed and code assigned",
            "code_id": res.item_id,
        }
    return {"success": True, "message": "Payment rejected"}


# ----------------------------
# Operator API: token links from the chat notification
# ----------------------------
def _success_params(res: TransitionResult) -> dict:
    if res.action == ACTION_CONFIRM:
        return {
            "success": "confirmed",
            "product": res.product_name or "Product",
            "amount": res.order.amount,
        }
    return {"success": "rejected"}


@app.get("/api/telegram-confirm")
async def telegram_confirm(
    token: Optional[str] = None,
    action: Optional[str] = None,
    gw: ConfirmationGateway = Depends(get_gateway),
):
    try:
        async with timeit("gateway.token_confirm_or_reject"):
            res = await gw.token_confirm_or_reject(token, action)
    except GiftCodeError as e:
        return result_redirect(error=e.message)
    except Exception:
        logger.exception("token action failed action=%s", action)
        return result_redirect(error="internal server error")
    return result_redirect(**_success_params(res))


@app.get(RESULT_PATH, response_class=HTMLResponse)
async def telegram_result(
    success: Optional[str] = None,
    error: Optional[str] = None,
    product: Optional[str] = None,
    amount: Optional[int] = None,
):
    html = templates.get_template("telegram_result.html").render(
        success=success,
        error=error,
        product=product,
        amount=format_amount(amount) if amount else None,
    )
    return HTMLResponse(html)


# ----------------------------
# Admin API
# ----------------------------
@app.get("/api/admin/orders")
async def api_admin_orders(
    status: Optional[str] = None,
    limit: int = 200,
    x_admin_id: Optional[str] = Header(None),
    gw: ConfirmationGateway = Depends(get_gateway),
):
    await gw.require_admin(x_admin_id)
    if status and status not in ORDER_STATUSES:
        raise ValidationError("unknown status", {"status": status})
    orders = await gw.orders.list_recent(status=status, limit=limit)
    return {"items": [o.public_view() for o in orders], "limit": limit}


@app.post("/api/admin/recount")
async def api_admin_recount(
    product_id: Optional[str] = None,
    x_admin_id: Optional[str] = Header(None),
    gw: ConfirmationGateway = Depends(get_gateway),
):
    await gw.require_admin(x_admin_id)
    async with timeit("inventory.recount"):
        counts = await gw.inventory.recount(product_id)
    return {"stock": counts}


@app.get("/api/admin/timings")
async def api_admin_timings(
    x_admin_id: Optional[str] = Header(None),
    gw: ConfirmationGateway = Depends(get_gateway),
):
    await gw.require_admin(x_admin_id)
    return snapshot()
