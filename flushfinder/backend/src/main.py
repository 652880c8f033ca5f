from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Header, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field

from config import Configuration
from errors import (
    AuthRequiredError,
    ExternalServiceError,
    FlushFinderError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from models import Coordinates, ImageUpload, Listing, User
from services.auth import AuthSession
from services.backends import (
    DocumentStore,
    IdentityProvider,
    InMemoryDocumentStore,
    InMemoryIdentityProvider,
    InMemoryObjectStore,
    ObjectStore,
    PlacesLookup,
)
from services.places import GooglePlacesClient, parse_widget_selection
from services.ranking import SortMode, select_and_filter
from services.submission import AMENITY_OPTIONS, SubmissionForm
from services.washrooms import WashroomService
from utils import format_distance


@dataclass
class AppServices:
    cfg: Configuration
    identity: IdentityProvider
    store: DocumentStore
    objects: ObjectStore
    places: Optional[PlacesLookup] = None

    @property
    def washrooms(self) -> WashroomService:
        return WashroomService(self.cfg, self.store, self.objects, self.places)


def default_services(cfg: Optional[Configuration] = None) -> AppServices:
    """In-memory backends for local runs; a places client only when a key is set."""
    cfg = cfg or Configuration.from_env()
    places = GooglePlacesClient(cfg) if cfg.google_maps_api_key else None
    return AppServices(
        cfg=cfg,
        identity=InMemoryIdentityProvider(),
        store=InMemoryDocumentStore(),
        objects=InMemoryObjectStore(),
        places=places,
    )


class ListingPayload(BaseModel):
    id: str
    name: str
    address: str
    rating: int
    lat: Optional[float] = None
    lng: Optional[float] = None
    place_id: Optional[str] = None
    amenities: List[str] = []
    images: List[str] = []
    description: str = ""
    created_at: str = ""
    user_id: Optional[str] = None
    user_display_name: Optional[str] = None
    user_photo_url: Optional[str] = None
    is_new: bool = False
    distance_km: Optional[float] = None
    distance_label: str = ""


class ListingsResponse(BaseModel):
    listings: List[ListingPayload]
    sort: str
    query: str = ""
    location_fallback: bool = False
    total: int


class UserPayload(BaseModel):
    uid: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = None


class SignInRequest(BaseModel):
    credential: str = Field(..., min_length=1, description="Token issued by the identity provider")


class ReportRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ReportPayload(BaseModel):
    washroom_id: str
    reporter_id: str
    status: str
    created_at: str


def to_listing_payload(listing: Listing) -> ListingPayload:
    distance = getattr(listing, "distance", None)
    if distance is not None and not math.isfinite(distance):
        distance = None
    coords = listing.coordinates
    return ListingPayload(
        id=listing.id,
        name=listing.name,
        address=listing.address,
        rating=listing.rating,
        lat=coords.lat if coords else None,
        lng=coords.lng if coords else None,
        place_id=listing.place_id,
        amenities=list(listing.amenities),
        images=list(listing.images),
        description=listing.description,
        created_at=listing.created_at,
        user_id=listing.user_id,
        user_display_name=listing.user_display_name,
        user_photo_url=listing.user_photo_url,
        is_new=listing.is_new,
        distance_km=round(distance, 3) if distance is not None else None,
        distance_label=format_distance(distance),
    )


def to_user_payload(user: User) -> UserPayload:
    return UserPayload(uid=user.uid, display_name=user.display_name, email=user.email, photo_url=user.photo_url)


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def current_user(
    services: AppServices = Depends(get_services),
    authorization: Optional[str] = Header(None),
) -> Optional[User]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    try:
        return services.identity.verify(token.strip())
    except FlushFinderError:
        raise
    except Exception as exc:
        raise ExternalServiceError("identity", "token verification failed", cause=exc)


def require_user(user: Optional[User] = Depends(current_user)) -> User:
    if user is None:
        raise AuthRequiredError()
    return user


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": "validation failed", "errors": exc.errors})

    @app.exception_handler(AuthRequiredError)
    async def _auth_required(request: Request, exc: AuthRequiredError) -> JSONResponse:
        return JSONResponse(status_code=401, content={"detail": str(exc), "action": "sign_in"})

    @app.exception_handler(PermissionDeniedError)
    async def _forbidden(request: Request, exc: PermissionDeniedError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": "not found"})

    @app.exception_handler(ExternalServiceError)
    async def _external(request: Request, exc: ExternalServiceError) -> JSONResponse:
        logger.error("external service failure on {}: {}", request.url.path, exc)
        return JSONResponse(status_code=502, content={"detail": exc.public_message})

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("request failed: {}", exc)
        return JSONResponse(status_code=500, content={"detail": "internal error"})


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    app = FastAPI(title="FlushFinder")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.services = services or default_services()
    _install_error_handlers(app)

    @app.get("/healthz")
    def healthz(services: AppServices = Depends(get_services)) -> dict:
        logger.info("cfg: {}", services.cfg.log_summary())
        return {"status": "ok"}

    @app.get("/amenities")
    def amenities() -> dict:
        return {"amenities": list(AMENITY_OPTIONS)}

    @app.get("/washrooms", response_model=ListingsResponse)
    async def list_washrooms(
        lat: Optional[float] = Query(None, ge=-90.0, le=90.0),
        lng: Optional[float] = Query(None, ge=-180.0, le=180.0),
        sort: Optional[str] = Query(None, description="distance or rating"),
        q: str = Query("", description="Search terms matched against name and address"),
        services: AppServices = Depends(get_services),
    ) -> ListingsResponse:
        if (lat is None) != (lng is None):
            raise ValidationError({"location": "lat and lng must be given together"})
        mode = SortMode.parse(sort, SortMode.parse(services.cfg.default_sort))
        location = Coordinates(lat=lat, lng=lng) if lat is not None and lng is not None else None

        listings = await services.washrooms.list_washrooms()
        results, fallback = select_and_filter(listings, location, mode, q)
        return ListingsResponse(
            listings=[to_listing_payload(l) for l in results],
            sort=mode.value,
            query=q,
            location_fallback=fallback,
            total=len(results),
        )

    @app.post("/washrooms", response_model=ListingPayload, status_code=201)
    async def add_washroom(
        name: str = Form(""),
        address: str = Form(""),
        place_id: Optional[str] = Form(None),
        formatted_address: Optional[str] = Form(None),
        lat: Optional[float] = Form(None),
        lng: Optional[float] = Form(None),
        rating: int = Form(0),
        amenities: List[str] = Form([]),
        description: str = Form(""),
        images: List[UploadFile] = File([]),
        user: User = Depends(require_user),
        services: AppServices = Depends(get_services),
    ) -> ListingPayload:
        form = SubmissionForm()
        form.set_name(name)
        form.set_address_text(address or formatted_address or "")
        selection = parse_widget_selection(
            {"place_id": place_id, "formatted_address": formatted_address, "lat": lat, "lng": lng}
        )
        if selection is not None:
            form.select_place(selection)
        form.set_rating(rating)
        form.set_amenities(amenities)
        form.set_description(description)
        for upload in images:
            if not upload.filename:
                continue
            data = await upload.read()
            form.add_image(ImageUpload(filename=upload.filename, data=data, content_type=upload.content_type))

        draft = form.submit()
        try:
            listing = await services.washrooms.add_washroom(draft, user)
        except Exception:
            form.mark_failed()
            raise
        form.mark_submitted()
        return to_listing_payload(listing)

    @app.delete("/washrooms/{washroom_id}", status_code=204)
    async def delete_washroom(
        washroom_id: str,
        user: User = Depends(require_user),
        services: AppServices = Depends(get_services),
    ) -> Response:
        await services.washrooms.delete_washroom(washroom_id, user)
        return Response(status_code=204)

    @app.post("/washrooms/{washroom_id}/report", response_model=ReportPayload, status_code=201)
    async def report_washroom(
        washroom_id: str,
        body: Optional[ReportRequest] = None,
        user: Optional[User] = Depends(current_user),
        services: AppServices = Depends(get_services),
    ) -> ReportPayload:
        report = await services.washrooms.report_washroom(
            washroom_id,
            reporter_id=user.uid if user else None,
            reason=body.reason if body else None,
        )
        return ReportPayload(
            washroom_id=report.washroom_id,
            reporter_id=report.reporter_id,
            status=report.status,
            created_at=report.created_at,
        )

    @app.post("/auth/sign-in", response_model=UserPayload)
    def sign_in(req: SignInRequest, services: AppServices = Depends(get_services)) -> UserPayload:
        session = AuthSession(services.identity, services.store, services.cfg)
        return to_user_payload(session.sign_in(req.credential))

    @app.post("/auth/sign-out", status_code=204)
    def sign_out(
        user: User = Depends(require_user),
        services: AppServices = Depends(get_services),
    ) -> Response:
        AuthSession(services.identity, services.store, services.cfg, user=user).sign_out()
        return Response(status_code=204)

    @app.get("/me", response_model=UserPayload)
    def me(user: User = Depends(require_user)) -> UserPayload:
        return to_user_payload(user)

    @app.get("/me/washrooms", response_model=Dict[str, List[ListingPayload]])
    async def my_washrooms(
        user: User = Depends(require_user),
        services: AppServices = Depends(get_services),
    ) -> Dict[str, List[ListingPayload]]:
        listings = await services.washrooms.list_for_user(user.uid)
        return {"listings": [to_listing_payload(l) for l in listings]}

    return app


load_dotenv(Path(__file__).resolve().parent.parent / ".env")
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8010, reload=True)
