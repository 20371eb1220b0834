from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import allow_roles, get_current_active_user, get_organization_or_404
from common.logging_middleware import add_audit_middleware
from common.models import Membership, MembershipRole, Organization, OrganizationState, RoleEnum, User
from common.rate_limit import ADMIN_LIMIT, READ_LIMIT, apply_rate_limiter, limiter
from common.schemas import MembershipRead, OrganizationCreate, OrganizationRead, OrganizationStateUpdate

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Organizations Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "organizations")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "organizations"}


@app.post("/organizations", response_model=OrganizationRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def create_organization(
    request: Request,
    organization_in: OrganizationCreate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Organization:
    duplicate = (
        db.query(Organization)
        .filter((Organization.name == organization_in.name) | (Organization.url == organization_in.url))
        .first()
    )
    if duplicate:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Organization name or url already taken")

    organization = Organization(name=organization_in.name, url=organization_in.url, state=OrganizationState.PENDING)
    organization.memberships.append(Membership(user_id=current_user.id, role=MembershipRole.CREATOR))
    db.add(organization)
    db.commit()
    db.refresh(organization)
    return organization


@app.get("/organizations/{organization_id}", response_model=OrganizationRead)
@limiter.limit(READ_LIMIT)
def get_organization(request: Request, organization_id: int, db: Session = Depends(get_db)) -> Organization:
    return get_organization_or_404(db, organization_id)


@app.post(
    "/organizations/{organization_id}/join",
    response_model=MembershipRead,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("10/minute")
def join_organization(
    request: Request,
    organization_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Membership:
    organization = get_organization_or_404(db, organization_id)
    if organization.state == OrganizationState.LOCKED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Organization is locked")
    existing = (
        db.query(Membership)
        .filter(Membership.organization_id == organization_id, Membership.user_id == current_user.id)
        .first()
    )
    if existing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Already a member")

    membership = Membership(organization_id=organization_id, user_id=current_user.id, role=MembershipRole.MEMBER)
    db.add(membership)
    db.commit()
    db.refresh(membership)
    return membership


@app.get("/organizations/{organization_id}/members", response_model=list[MembershipRead])
@limiter.limit(READ_LIMIT)
def list_members(
    request: Request,
    organization_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> list[Membership]:
    get_organization_or_404(db, organization_id)
    return (
        db.query(Membership)
        .filter(Membership.organization_id == organization_id)
        .order_by(Membership.id)
        .all()
    )


@app.put("/organizations/{organization_id}/state", response_model=OrganizationRead)
@limiter.limit(ADMIN_LIMIT)
def set_organization_state(
    request: Request,
    organization_id: int,
    state_in: OrganizationStateUpdate,
    current_user: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> Organization:
    organization = get_organization_or_404(db, organization_id)
    organization.state = state_in.state
    db.commit()
    db.refresh(organization)
    return organization
