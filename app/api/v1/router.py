"""
Routers de la API.
`api_v1_router` agrupa la API REST v1; `fhir_router` la superficie FHIR R4.
"""

from fastapi import APIRouter

from app.api.v1.fhir import router as fhir_resources_router
from app.api.v1.problem_list import router as problem_list_router
from app.api.v1.terminology import router as terminology_router

api_v1_router = APIRouter()

api_v1_router.include_router(
    terminology_router,
    prefix="/terminology",
    tags=["Terminología NAMASTE / CIE-11"],
)

fhir_router = APIRouter()

fhir_router.include_router(
    problem_list_router,
    prefix="/ProblemList",
    tags=["FHIR Lista de Problemas"],
)

fhir_router.include_router(
    fhir_resources_router,
    tags=["FHIR Terminología"],
)
