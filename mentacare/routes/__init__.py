from mentacare.routes.admins import build_admins_blueprint
from mentacare.routes.auth import build_auth_blueprint
from mentacare.routes.patients import build_patients_blueprint
from mentacare.routes.sessions import build_sessions_blueprint
from mentacare.routes.therapists import build_therapists_blueprint

__all__ = [
    "build_admins_blueprint",
    "build_auth_blueprint",
    "build_patients_blueprint",
    "build_sessions_blueprint",
    "build_therapists_blueprint",
]
