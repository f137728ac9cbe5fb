import logging
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from app.config import Settings, configure_logging
from app.errors import GatewayError, MalformedEventError, NotFoundError, PaymentServiceError, ValidationError
from app.events import creation_event
from app.gateway import GatewayResponse, PesepayClient
from app.messaging import EventPublisher
from app.reconciler import Reconciler
from app.schemas import PollRequest, RedirectPaymentCreate, SeamlessPaymentCreate, TransactionRead
from app.store import TransactionStore

logger = logging.getLogger(__name__)


def get_store(request: Request) -> TransactionStore:
    return request.app.state.store


def get_reconciler(request: Request) -> Reconciler:
    return request.app.state.reconciler


def get_gateway(request: Request) -> PesepayClient:
    return request.app.state.gateway


def gateway_reply(response: GatewayResponse, **extra) -> JSONResponse:
    status_code = 200 if response.success else 400
    return JSONResponse(status_code=status_code, content={**response.to_dict(), **extra})


async def read_webhook_body(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise MalformedEventError("Body is not valid JSON")
        if not isinstance(body, dict):
            raise MalformedEventError("Unknown payload format")
        return body
    form = await request.form()
    return dict(form)


def create_app(settings: Optional[Settings] = None, store: Optional[TransactionStore] = None,
               gateway=None, publisher: Optional[EventPublisher] = None) -> FastAPI:
    app = FastAPI(title="Payment Gateway Service")
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    owns_store = store is None
    owns_gateway = gateway is None
    owns_publisher = publisher is None
    app.state.settings = settings
    app.state.store = store if store is not None else TransactionStore()
    app.state.gateway = gateway
    app.state.publisher = publisher
    app.state.reconciler = Reconciler(app.state.store, publisher)

    @app.on_event("startup")
    async def startup_event():
        # Missing credentials abort startup.
        if app.state.settings is None:
            app.state.settings = Settings.from_env()
            configure_logging(app.state.settings.log_level)
        if app.state.gateway is None:
            app.state.gateway = PesepayClient(app.state.settings)
        if app.state.publisher is None:
            app.state.publisher = EventPublisher(app.state.settings.rabbitmq_url)
            app.state.reconciler.publisher = app.state.publisher
            await app.state.publisher.connect()
        logger.info("Pesepay client initialized. Webhook (result) URL: %s", app.state.settings.result_url)

    @app.on_event("shutdown")
    async def shutdown_event():
        if owns_publisher and app.state.publisher is not None:
            await app.state.publisher.close()
        if owns_gateway and app.state.gateway is not None:
            await app.state.gateway.aclose()
        if owns_store:
            app.state.store.clear()

    @app.exception_handler(PaymentServiceError)
    async def service_error_handler(request: Request, exc: PaymentServiceError):
        if exc.status_code >= 500:
            return JSONResponse(status_code=exc.status_code, content={
                "success": False, "message": "Internal server error", "error": exc.message,
            })
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(error["loc"]), "msg": error["msg"]} for error in exc.errors()]
        return JSONResponse(status_code=400, content={
            "success": False, "message": "Missing required fields", "errors": errors,
        })

    @app.middleware("http")
    async def catch_unexpected_errors(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            return JSONResponse(status_code=500, content={
                "success": False, "message": "Internal server error", "error": str(e),
            })

    @app.post("/payment-result", response_class=PlainTextResponse)
    async def payment_result(request: Request, reconciler: Reconciler = Depends(get_reconciler)):
        logger.info("Webhook received on /payment-result")
        try:
            body = await read_webhook_body(request)
            logger.debug("Webhook body: %s", body)
            await reconciler.ingest_webhook(body)
        except MalformedEventError as e:
            logger.warning("Rejected webhook: %s", e.message)
            return PlainTextResponse(f"Bad Request: {e.message}", status_code=400)
        # The gateway keeps redelivering until it sees a 200.
        return PlainTextResponse("OK", status_code=200)

    @app.get("/all-transactions", response_model=List[TransactionRead])
    async def all_transactions(store: TransactionStore = Depends(get_store)):
        return [record.to_dict() for record in store.list_all()]

    @app.get("/transactions/{reference_number}", response_model=TransactionRead)
    async def get_transaction(reference_number: str, store: TransactionStore = Depends(get_store)):
        record = store.get(reference_number)
        if record is None:
            raise NotFoundError(f"Transaction {reference_number} not found")
        return record.to_dict()

    @app.post("/create-redirect-payment")
    async def create_redirect_payment(data: RedirectPaymentCreate,
                                      gateway: PesepayClient = Depends(get_gateway),
                                      reconciler: Reconciler = Depends(get_reconciler)):
        response = await gateway.create_and_initiate(data.amount, data.currencyCode, data.paymentReason)
        if not response.success:
            return gateway_reply(response)
        if not response.reference_number:
            raise GatewayError("Gateway response has no referenceNumber")

        record = await reconciler.record_creation(
            creation_event(response.reference_number, data.amount, data.paymentReason, response.data)
        )
        return gateway_reply(response, transaction=record.to_dict())

    @app.post("/create-seamless-payment")
    async def create_seamless_payment(data: SeamlessPaymentCreate,
                                      gateway: PesepayClient = Depends(get_gateway),
                                      reconciler: Reconciler = Depends(get_reconciler)):
        response = await gateway.create_and_initiate_seamless(
            data.currencyCode, data.paymentMethodCode,
            data.customerEmail, data.customerPhone, data.customerName,
            data.paymentReason, data.amount, data.requiredFields,
        )
        if not response.success:
            return gateway_reply(response)
        if not response.reference_number:
            raise GatewayError("Gateway response has no referenceNumber")

        record = await reconciler.record_creation(
            creation_event(response.reference_number, data.amount, data.paymentReason, response.data)
        )
        return gateway_reply(response, transaction=record.to_dict())

    # Check and poll results go straight back to the caller; only webhooks
    # and creations change the store.
    @app.get("/check-payment/{reference_number}")
    async def check_payment(reference_number: str, gateway: PesepayClient = Depends(get_gateway)):
        return gateway_reply(await gateway.check_status(reference_number))

    @app.post("/poll-payment")
    async def poll_payment(data: PollRequest, gateway: PesepayClient = Depends(get_gateway)):
        return gateway_reply(await gateway.poll_status(data.pollUrl))

    @app.get("/currencies")
    async def currencies(gateway: PesepayClient = Depends(get_gateway)):
        logger.info("Fetching active currencies...")
        try:
            return await gateway.list_active_currencies()
        except GatewayError as e:
            logger.error("Error fetching currencies: %s", e.message)
            return JSONResponse(status_code=500, content={
                "success": False, "message": "Failed to fetch currencies", "error": e.message,
            })

    @app.get("/payment-methods")
    async def payment_methods(currencyCode: Optional[str] = None,
                              gateway: PesepayClient = Depends(get_gateway)):
        if not currencyCode:
            raise ValidationError('Query parameter "currencyCode" is required')
        try:
            return await gateway.list_payment_methods(currencyCode)
        except GatewayError as e:
            logger.error("Error fetching payment methods: %s", e.message)
            return JSONResponse(status_code=500, content={
                "success": False, "message": "Failed to fetch payment methods", "error": e.message,
            })

    @app.get("/health")
    async def health(store: TransactionStore = Depends(get_store)):
        return {"status": "ok", "transactions": len(store)}

    return app


app = create_app()

if __name__ == "__main__":
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port)
