import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from carepulse.core import config
from carepulse.database import init_db
from carepulse.routes import (
    analytics_routes,
    appointment_routes,
    auth_routes,
    doctor_routes,
    patient_routes,
    report_routes,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)

app = FastAPI(title='CarePulse API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_application() -> None:
    config.validate_runtime_config()
    try:
        init_db()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'CarePulse API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(patient_routes.router, prefix='/patients')
app.include_router(doctor_routes.router, prefix='/doctors')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(report_routes.router, prefix='/appointments')
app.include_router(analytics_routes.router, prefix='/analytics')
