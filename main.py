import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

from config import Settings, configure_logging
from errors import NotFoundError, ServiceError
from guards import Authenticated, Guard, HasRole, IdentityMatch, Rejected, RequestContext, run_guards
from schemas import (
    ADMIN, SELLER,
    SessionRequest, UserProfile, RoleUpdate,
    PlantCreate, PlantUpdate, QuantityAdjust,
    OrderCreate, OrderStatusUpdate,
)
from services import Services, build_services
from stores import doc_to_json

logger = logging.getLogger("plantnet")

TOKEN_COOKIE = "token"

# sale takes stock away, restock/cancellation puts it back
QUANTITY_SIGN = {"decrease": -1, "increase": 1}

router = APIRouter()

# -------------------- Dependencies --------------------

def get_services(request: Request) -> Services:
    return request.app.state.services


async def _body_email(request: Request) -> Optional[str]:
    try:
        body = await request.json()
    except ValueError:
        return None
    email = body.get("email") if isinstance(body, dict) else None
    return email if isinstance(email, str) else None


def guarded(*guards: Guard):
    """Dependency running ``guards`` in order; the first rejection ends the request."""
    needs_body = any(isinstance(g, IdentityMatch) and g.body for g in guards)

    async def dependency(request: Request) -> RequestContext:
        context = RequestContext(
            token=request.cookies.get(TOKEN_COOKIE),
            path_email=request.path_params.get("email"),
            body_email=await _body_email(request) if needs_body else None,
        )
        result = await run_in_threadpool(run_guards, context, guards, get_services(request))
        if isinstance(result, Rejected):
            raise HTTPException(status_code=int(result.outcome), detail=result.message)
        return result.context

    return Depends(dependency)


def _set_cookie_flags(settings: Settings) -> dict:
    return {"httponly": True, "secure": settings.is_production, "samesite": settings.cookie_samesite}

# -------------------- Health & Test --------------------

@router.get("/")
def read_root():
    return {"message": "Hello from plantNet Server.."}


@router.get("/test")
def test_database(services: Services = Depends(get_services)):
    response = {
        "backend": "✅ Running",
        "database": "⚠️ No database client",
        "database_url": "✅ Set" if services.settings.database_url else "❌ Not Set",
        "database_name": services.settings.database_name,
        "collections": []
    }
    if services.database is not None:
        try:
            response["collections"] = services.database.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"❌ Error: {str(e)[:50]}"
    return response

# -------------------- Session --------------------

@router.post("/jwt")
def issue_token(payload: SessionRequest, response: Response, services: Services = Depends(get_services)):
    token = services.codec.issue({"email": payload.email})
    response.set_cookie(TOKEN_COOKIE, token, **_set_cookie_flags(services.settings))
    return {"success": True}


@router.get("/logout")
def logout(response: Response, services: Services = Depends(get_services)):
    response.delete_cookie(TOKEN_COOKIE, **_set_cookie_flags(services.settings))
    return {"success": True}

# -------------------- Users --------------------

@router.get("/users/role/{email}")
def user_role(email: str, services: Services = Depends(get_services)):
    return {"role": services.users.get_role(email)}


@router.post("/users/{email}")
def save_user(email: str, payload: UserProfile,
              ctx: RequestContext = guarded(Authenticated(), IdentityMatch(path=True, body=True)),
              services: Services = Depends(get_services)):
    user, _ = services.users.upsert_on_first_seen(email, payload.model_dump())
    return doc_to_json(user)


@router.patch("/users/{email}")
def request_verification(email: str,
                         ctx: RequestContext = guarded(Authenticated(), IdentityMatch(path=True, body=False)),
                         services: Services = Depends(get_services)):
    return services.users.request_verification(email).to_json()


@router.get("/all-users/{email}")
def all_users(email: str,
              ctx: RequestContext = guarded(Authenticated(), HasRole(ADMIN), IdentityMatch(path=True, body=False)),
              services: Services = Depends(get_services)):
    return [doc_to_json(u) for u in services.users.list_all_except(email)]


@router.patch("/user/role/{email}")
def set_user_role(email: str, payload: RoleUpdate,
                  ctx: RequestContext = guarded(Authenticated(), HasRole(ADMIN)),
                  services: Services = Depends(get_services)):
    return services.users.set_role_and_verify(email, payload.role).to_json()

# -------------------- Plants --------------------

@router.post("/plants")
def create_plant(payload: PlantCreate,
                 ctx: RequestContext = guarded(Authenticated(), HasRole(SELLER)),
                 services: Services = Depends(get_services)):
    given = payload.seller.model_dump() if payload.seller else {}
    seller = {
        "email": ctx.identity,
        "name": given.get("name") or ctx.user.get("name"),
        "image": given.get("image") or ctx.user.get("image"),
    }
    return services.plants.create(payload, seller).to_json()


@router.get("/plants/seller")
def seller_inventory(ctx: RequestContext = guarded(Authenticated(), HasRole(SELLER)),
                     services: Services = Depends(get_services)):
    return [doc_to_json(p) for p in services.plants.find_by_seller(ctx.identity)]


@router.patch("/plants/quantity")
def adjust_plant_quantity(payload: QuantityAdjust,
                          ctx: RequestContext = guarded(Authenticated()),
                          services: Services = Depends(get_services)):
    delta = QUANTITY_SIGN[payload.status] * payload.quantity
    return services.plants.adjust_quantity(payload.id, delta).to_json()


@router.get("/plants")
def list_plants(services: Services = Depends(get_services)):
    return [doc_to_json(p) for p in services.plants.find_all()]


@router.get("/plants/{plant_id}")
def get_plant(plant_id: str, services: Services = Depends(get_services)):
    plant = services.plants.find_by_id(plant_id)
    if not plant:
        raise NotFoundError("Plant not found")
    return doc_to_json(plant)


@router.put("/plants/{plant_id}")
def update_plant(plant_id: str, payload: PlantUpdate,
                 ctx: RequestContext = guarded(Authenticated(), HasRole(SELLER)),
                 services: Services = Depends(get_services)):
    return services.plants.update_full(plant_id, payload, ctx.identity).to_json()


@router.delete("/plants/{plant_id}")
def delete_plant(plant_id: str,
                 ctx: RequestContext = guarded(Authenticated(), HasRole(SELLER)),
                 services: Services = Depends(get_services)):
    return services.plants.delete(plant_id, ctx.identity).to_json()

# -------------------- Orders --------------------

@router.post("/orders")
def create_order(payload: OrderCreate,
                 ctx: RequestContext = guarded(Authenticated()),
                 services: Services = Depends(get_services)):
    return services.orders.create(payload, ctx.identity).to_json()


@router.post("/orders/checkout")
def checkout(payload: OrderCreate,
             ctx: RequestContext = guarded(Authenticated()),
             services: Services = Depends(get_services)):
    return services.orders.checkout(payload, ctx.identity).to_json()


@router.get("/orders/seller/{email}")
def seller_orders(email: str,
                  ctx: RequestContext = guarded(Authenticated(), HasRole(SELLER), IdentityMatch(path=True, body=False)),
                  services: Services = Depends(get_services)):
    return [doc_to_json(o) for o in services.orders.list_for_seller(email)]


@router.patch("/orders/seller/{order_id}")
def update_order_status(order_id: str, payload: OrderStatusUpdate,
                        ctx: RequestContext = guarded(Authenticated(), HasRole(SELLER)),
                        services: Services = Depends(get_services)):
    return services.orders.update_status(order_id, payload.status, ctx.identity).to_json()


@router.delete("/orders/seller/{order_id}")
def seller_cancel_order(order_id: str,
                        ctx: RequestContext = guarded(Authenticated(), HasRole(SELLER)),
                        services: Services = Depends(get_services)):
    return services.orders.cancel_by_seller(order_id, ctx.identity).to_json()


@router.get("/orders/{email}")
def customer_orders(email: str,
                    ctx: RequestContext = guarded(Authenticated(), IdentityMatch(path=True, body=False)),
                    services: Services = Depends(get_services)):
    return [doc_to_json(o) for o in services.orders.list_for_customer(email)]


@router.delete("/orders/{order_id}")
def customer_cancel_order(order_id: str,
                          ctx: RequestContext = guarded(Authenticated()),
                          services: Services = Depends(get_services)):
    return services.orders.cancel_by_customer(order_id, ctx.identity).to_json()

# -------------------- App --------------------

def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the app; without ``services`` the Mongo stores are wired at startup."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            # raises DatabaseConfigError / TokenConfigError, so a misconfigured server never starts
            app.state.services = build_services(settings)
        yield
        database = app.state.services.database
        if database is not None:
            database.client.close()

    app = FastAPI(title="PlantNet API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        logger.info("%s %s %s %.1fms", request.method, request.url.path,
                    response.status_code, (time.perf_counter() - start) * 1000)
        return response

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        return JSONResponse(status_code=int(exc.outcome), content={"detail": exc.message})

    @app.exception_handler(PyMongoError)
    async def database_error_handler(request: Request, exc: PyMongoError):
        logger.exception("Database error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Database error"})

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
