import logging
from typing import Optional, Union
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from covers.generator import ImageGenerator, OpenAIImageGenerator
from covers.service import CoverService

from .config import Settings, configure_logging, get_settings
from .errors import (
    CoverGenerationError,
    CoverNotFoundError,
    GatewayError,
    InvalidRequestError,
    PaymentMismatchError,
    PaymentNotCompletedError,
    PaymentNotFoundError,
    PersistenceError,
)
from .gateway import PaymentGateway, PaystackGateway
from .identity import CurrentUserProvider
from .models import (
    CoverResponse,
    DownloadRequest,
    DownloadResponse,
    GenerateCoverRequest,
    InitializePaymentRequest,
    InitializePaymentResponse,
    PaymentRequiredResponse,
    UserBalance,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from .payments import PaymentService
from .service import CreditService, DownloadController
from .storage import LedgerStorage, create_storage

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[LedgerStorage] = None,
    gateway: Optional[PaymentGateway] = None,
    generator: Optional[ImageGenerator] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    storage = storage or create_storage(settings.database_url)
    gateway = gateway or PaystackGateway(
        settings.paystack_secret_key,
        base_url=settings.paystack_base_url,
        timeout=settings.gateway_timeout,
        retries=settings.gateway_retries,
        callback_url=settings.paystack_callback_url,
    )
    generator = generator or OpenAIImageGenerator(
        api_key=settings.openai_api_key, model=settings.image_model, size=settings.image_size,
    )

    credit_service = CreditService(storage, free_downloads=settings.free_downloads)
    downloads = DownloadController(credit_service, enforce_ownership=settings.enforce_asset_ownership)
    payment_service = PaymentService(
        credit_service, gateway,
        currency=settings.payment_currency,
        credits_per_dollar=settings.credits_per_dollar,
    )
    cover_service = CoverService(generator, storage)
    current_user = CurrentUserProvider(settings.session_cookie_name)

    app = FastAPI(
        title="Book Cover Studio API",
        description="AI book covers with a freemium download-credit ledger",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PersistenceError)
    def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Storage is temporarily unavailable"},
        )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "book-cover-studio"}

    @app.get("/status", response_model=UserBalance, tags=["Users"])
    def get_current_status(user_id: str = Depends(current_user)) -> UserBalance:
        return credit_service.get_balance(user_id)

    @app.get("/status/{user_id}", response_model=UserBalance, tags=["Users"])
    def get_user_status(user_id: str) -> UserBalance:
        try:
            return credit_service.get_balance(user_id)
        except InvalidRequestError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.post("/covers", response_model=CoverResponse, status_code=status.HTTP_201_CREATED, tags=["Covers"])
    def generate_cover(
        request: GenerateCoverRequest, user_id: str = Depends(current_user),
    ) -> CoverResponse:
        try:
            cover = cover_service.generate(user_id, request)
        except CoverGenerationError:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Failed to generate book cover, please try again",
            )
        return CoverResponse(**cover.model_dump())

    @app.get("/covers", response_model=list[CoverResponse], tags=["Covers"])
    def list_covers(user_id: str = Depends(current_user)) -> list[CoverResponse]:
        return [CoverResponse(**c.model_dump()) for c in cover_service.list_covers(user_id)]

    @app.get("/covers/{cover_id}", response_model=CoverResponse, tags=["Covers"])
    def get_cover(cover_id: UUID, user_id: str = Depends(current_user)) -> CoverResponse:
        try:
            cover = cover_service.get_cover(cover_id)
            if settings.enforce_asset_ownership and not cover.is_visible_to(user_id):
                raise CoverNotFoundError(f"Cover {cover_id} not found")
        except CoverNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Cover {cover_id} not found")
        return CoverResponse(**cover.model_dump())

    @app.post(
        "/download",
        response_model=Union[DownloadResponse, PaymentRequiredResponse],
        responses={status.HTTP_402_PAYMENT_REQUIRED: {"model": PaymentRequiredResponse}},
        tags=["Downloads"],
    )
    def download_cover(
        request: DownloadRequest, response: Response, user_id: str = Depends(current_user),
    ) -> Union[DownloadResponse, PaymentRequiredResponse]:
        try:
            result = downloads.download(user_id, request.cover_id)
        except CoverNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Cover {request.cover_id} not found")

        if not result.delivered:
            response.status_code = status.HTTP_402_PAYMENT_REQUIRED
            return PaymentRequiredResponse(cover_id=result.cover_id, remaining_free=result.remaining_free)
        return DownloadResponse(
            cover_id=result.cover_id, image_url=result.image_url, remaining_free=result.remaining_free,
        )

    @app.post("/payment/initialize", response_model=InitializePaymentResponse, tags=["Payments"])
    def initialize_payment(
        request: InitializePaymentRequest, user_id: str = Depends(current_user),
    ) -> InitializePaymentResponse:
        try:
            return payment_service.initialize(user_id, request)
        except InvalidRequestError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except GatewayError:
            logger.exception("Payment initialization failed for user %s", user_id)
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to initialize payment")

    @app.post("/payment/verify", response_model=VerifyPaymentResponse, tags=["Payments"])
    def verify_payment(
        request: VerifyPaymentRequest, user_id: str = Depends(current_user),
    ) -> VerifyPaymentResponse:
        try:
            return payment_service.verify(user_id, request.reference)
        except PaymentNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Payment {request.reference} not found")
        except PaymentNotCompletedError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"message": "Payment was not successful", "status": e.status},
            )
        except PaymentMismatchError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except GatewayError:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Payment verification failed, please retry later",
            )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
