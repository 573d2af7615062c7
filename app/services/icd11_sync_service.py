"""
Sincronización de la CIE-11 (TM2 y Biomedicina) desde la API de la OMS.

Flujo:
1. Token OAuth2 (client credentials) contra ICD11_TOKEN_URL
2. Recorrido en preorden del árbol de la linearización MMS:
   - TM2: desde el capítulo 26 (ICD11_TM2_CHAPTER_ENTITY)
   - Biomedicina: desde la raíz MMS, omitiendo el capítulo 26
3. Upsert de cada entidad vía el registro (el padre siempre antes que el hijo)
"""

import logging

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import DependencyException, ValidationException
from app.models.admin_job import AdminJob
from app.models.icd11 import Icd11CodeType
from app.schemas.icd11 import Icd11CodeUpsert
from app.services import admin_job_service, audit_service
from app.services import code_registry_service as registry

settings = get_settings()
logger = logging.getLogger(__name__)

CHECKPOINT_EVERY = 50


def mms_root_url() -> str:
    return f"{settings.ICD11_API_BASE_URL.rstrip('/')}/release/11/{settings.ICD11_RELEASE}/mms"


def tm2_root_url() -> str:
    return f"{mms_root_url()}/{settings.ICD11_TM2_CHAPTER_ENTITY}"


def _https(uri: str) -> str:
    # La API publica los @id con http:// pero solo responde por https://
    return "https://" + uri[len("http://"):] if uri.startswith("http://") else uri


def _value(node: dict, key: str) -> str | None:
    item = node.get(key)
    if isinstance(item, dict):
        return (item.get("@value") or "").strip() or None
    if isinstance(item, str):
        return item.strip() or None
    return None


def _synonyms(node: dict) -> dict[str, str]:
    labels: dict[str, list[str]] = {}
    for synonym in node.get("synonym") or []:
        label = synonym.get("label") or {}
        value = (label.get("@value") or "").strip()
        if value:
            labels.setdefault(label.get("@language") or settings.ICD11_API_LANGUAGE, []).append(value)
    return {language: "; ".join(values) for language, values in labels.items()}


def _entity_code(node: dict) -> str:
    code = (node.get("code") or node.get("blockId") or "").strip()
    if code:
        return code
    return (node.get("@id") or "").rstrip("/").rsplit("/", 1)[-1]


# ── HTTP ─────────────────────────────────────────────


async def fetch_access_token(client: httpx.AsyncClient) -> str:
    """Obtiene un token OAuth2 (client credentials) del servidor de la OMS."""
    try:
        response = await client.post(
            settings.ICD11_TOKEN_URL,
            data={"grant_type": "client_credentials", "scope": "icdapi_access"},
            auth=(settings.ICD11_CLIENT_ID, settings.ICD11_CLIENT_SECRET),
        )
    except httpx.TimeoutException:
        raise DependencyException("Timeout al obtener el token de la API CIE-11")
    except httpx.RequestError as exc:
        raise DependencyException(f"Error de conexión con el servidor de tokens CIE-11: {exc}")

    if response.status_code != 200:
        raise DependencyException(
            f"El servidor de tokens CIE-11 respondió con status {response.status_code}"
        )

    token = response.json().get("access_token")
    if not token:
        raise DependencyException("La respuesta de tokens CIE-11 no incluye access_token")
    return token


async def _get_entity(client: httpx.AsyncClient, url: str, headers: dict) -> dict:
    try:
        response = await client.get(_https(url), headers=headers)
    except httpx.TimeoutException:
        raise DependencyException(f"Timeout al consultar la API CIE-11 ({url})")
    except httpx.RequestError as exc:
        raise DependencyException(f"Error de conexión con la API CIE-11: {exc}")

    if response.status_code != 200:
        raise DependencyException(
            f"La API CIE-11 respondió con status {response.status_code} para {url}"
        )
    return response.json()


# ── Recorrido ────────────────────────────────────────


async def _walk(
    db: AsyncSession,
    job: AdminJob,
    client: httpx.AsyncClient,
    headers: dict,
    *,
    root_url: str,
    code_type: Icd11CodeType,
    include_root: bool,
    skip_urls: set[str],
    counts: dict,
) -> None:
    # Pila de (url o nodo embebido, código padre, capítulo)
    stack: list[tuple[str | dict, str | None, str | None]] = [(root_url, None, None)]
    visited: set[str] = set()
    is_root = True

    while stack:
        ref, parent_code, chapter = stack.pop()
        node = ref if isinstance(ref, dict) else await _get_entity(client, ref, headers)
        entity_id = _https(node.get("@id") or (ref if isinstance(ref, str) else ""))
        if entity_id in visited:
            continue
        visited.add(entity_id)

        title = _value(node, "title")
        code = parent_code
        if is_root and not include_root:
            child_chapter = None
        else:
            code = _entity_code(node)
            child_chapter = chapter or title
            try:
                await registry.upsert_icd11(
                    db,
                    Icd11CodeUpsert(
                        code=code,
                        title=title or code,
                        definition=_value(node, "definition"),
                        code_type=code_type,
                        parent_code=parent_code,
                        chapter=child_chapter,
                        synonyms=_synonyms(node),
                        foundation_uri=node.get("foundationReference"),
                        linearization_uri=node.get("@id"),
                    ),
                )
                counts["upserted"] += 1
            except ValidationException as exc:
                counts["skipped"] += 1
                logger.warning(f"Entidad CIE-11 {entity_id} omitida: {exc.detail}")
                code = parent_code

            counts["processed"] += 1
            if counts["processed"] % CHECKPOINT_EVERY == 0:
                await admin_job_service.checkpoint(db, job, counts)
        is_root = False

        children = node.get("child") or []
        for child in reversed(children):
            if isinstance(child, str) and _https(child) in skip_urls:
                continue
            stack.append((child, code, child_chapter))


async def sync_icd11(
    db: AsyncSession,
    job: AdminJob,
    client: httpx.AsyncClient | None = None,
) -> dict:
    """
    Sincroniza TM2 y Biomedicina. Cualquier fallo de red o respuesta no-2xx
    lanza DependencyException (el job termina en FAILED).
    """
    if not settings.icd11_credentials_configured:
        logger.warning("Credenciales de la API CIE-11 no configuradas; sincronización abortada")
        raise DependencyException("Credenciales de la API CIE-11 no configuradas")

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.ICD11_HTTP_TIMEOUT)

    counts = {
        "tm2": {"processed": 0, "upserted": 0, "skipped": 0},
        "biomedicine": {"processed": 0, "upserted": 0, "skipped": 0},
    }
    try:
        token = await fetch_access_token(client)
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Accept-Language": settings.ICD11_API_LANGUAGE,
            "API-Version": "v2",
        }

        await _walk(
            db, job, client, headers,
            root_url=tm2_root_url(),
            code_type=Icd11CodeType.TM2,
            include_root=True,
            skip_urls=set(),
            counts=counts["tm2"],
        )
        await _walk(
            db, job, client, headers,
            root_url=mms_root_url(),
            code_type=Icd11CodeType.BIOMEDICINE,
            include_root=False,
            skip_urls={tm2_root_url()},
            counts=counts["biomedicine"],
        )
    finally:
        if owns_client:
            await client.aclose()

    await audit_service.log_action(
        db,
        entity="icd11_code",
        entity_id=settings.ICD11_RELEASE,
        action="data_sync",
        new_data=counts,
    )
    await db.commit()
    logger.info(f"Sincronización CIE-11 {settings.ICD11_RELEASE} completada: {counts}")
    return counts
