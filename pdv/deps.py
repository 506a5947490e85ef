from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from sqlalchemy.orm import Session
from pdv.config import settings
from pdv.db import get_db
from pdv.models.core import Role, RolePermission, Permission, UserRole
from pdv.services.courier import Messenger, default_messenger
from pdv.services.kiosk_sessions import KioskSessionStore
from pdv.services.receipts import PrintSurface, surface_for

auth_scheme = HTTPBearer(auto_error=False)

def require_auth(creds: HTTPAuthorizationCredentials | None = Depends(auth_scheme)) -> str:
    if not creds:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        data = jwt.decode(creds.credentials, settings.APP_SECRET, algorithms=["HS256"],
                          issuer=settings.JWT_ISS, options={"verify_aud": False})
        return data["sub"]
    except (jwt.PyJWTError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

def _user_permissions(db: Session, user_id: str) -> set[str]:
    q = (db.query(Permission.code)
         .join(RolePermission, RolePermission.permission_id == Permission.id)
         .join(Role, Role.id == RolePermission.role_id)
         .join(UserRole, UserRole.role_id == Role.id)
         .filter(UserRole.user_id == user_id))
    return {row[0] for row in q.all()}

def _is_admin(db: Session, user_id: str) -> bool:
    return (
        db.query(Role)
          .join(UserRole, UserRole.role_id == Role.id)
          .filter(UserRole.user_id == user_id, Role.code == "ADMIN")
          .first()
    ) is not None

def require_perm(code: str):
    def _dep(sub: str = Depends(require_auth), db: Session = Depends(get_db)):
        # ADMIN role implies every permission
        if _is_admin(db, sub):
            return sub
        if code not in _user_permissions(db, sub):
            raise HTTPException(status_code=403, detail=f"Missing permission: {code}")
        return sub
    return _dep

# Side-effect collaborators, overridable in tests via app.dependency_overrides.
class Printers:
    def __init__(self, billing: PrintSurface, kitchen: PrintSurface):
        self.billing = billing
        self.kitchen = kitchen

def get_printers(db: Session = Depends(get_db)) -> Printers:
    return Printers(billing=surface_for(db, "billing"), kitchen=surface_for(db, "kitchen"))

def get_messenger() -> Messenger:
    return default_messenger()

def get_kiosk_store(db: Session = Depends(get_db)) -> KioskSessionStore:
    return KioskSessionStore(db)
