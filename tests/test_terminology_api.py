"""
Tests de los endpoints REST de terminología (/api/v1/terminology).
"""

import pytest

from app.config import get_settings
from app.models.admin_job import JobStatus
from app.services import admin_job_service

settings = get_settings()
NAMASTE = settings.NAMASTE_SYSTEM
TM2 = settings.ICD11_TM2_SYSTEM
BIO = settings.ICD11_BIOMEDICINE_SYSTEM

BASE = "/api/v1/terminology"


@pytest.fixture
def enqueued(monkeypatch):
    """Reemplaza el encolado Celery y registra los jobs enviados."""
    sent = []

    async def _enqueue(db, job):
        sent.append(job.id)

    monkeypatch.setattr(admin_job_service, "enqueue_job", _enqueue)
    return sent


# ── Registro y búsqueda ──────────────────────────────


async def test_search_namaste(client, seed_codes):
    response = await client.get(f"{BASE}/namaste/search", params={"term": "jwara"})

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["page"] == 0
    assert [i["code"] for i in data["items"]] == ["AY001", "AY002"]


async def test_search_requires_term(client, seed_codes):
    response = await client.get(f"{BASE}/namaste/search")
    assert response.status_code == 422


async def test_autocomplete_short_term(client, seed_codes):
    response = await client.get(f"{BASE}/namaste/autocomplete", params={"term": "a"})
    assert response.status_code == 200
    assert response.json() == []


async def test_get_namaste_code_with_shortcuts(client, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY003", TM2, "SM25")

    response = await client.get(f"{BASE}/namaste/code/AY003")

    assert response.status_code == 200
    data = response.json()
    assert data["display"] == "Amavata"
    assert data["icd11_tm2_code"] == "SM25"
    assert data["icd11_biomedicine_code"] is None


async def test_list_by_system_and_categories(client, seed_codes):
    listed = await client.get(f"{BASE}/namaste/system/AYURVEDA")
    assert [c["code"] for c in listed.json()] == ["AY001", "AY002", "AY003"]

    categories = await client.get(f"{BASE}/namaste/categories/AYURVEDA")
    assert categories.json() == ["Jwara", "Vatavyadhi"]


async def test_icd11_code_with_dot(client, seed_codes):
    response = await client.get(f"{BASE}/icd11/code/FA20.0")

    assert response.status_code == 200
    assert response.json()["parent_code"] == "FA20"


async def test_icd11_by_type(client, seed_codes):
    response = await client.get(f"{BASE}/icd11/type/TM2")
    assert sorted(c["code"] for c in response.json()) == ["SM25", "SR11", "SR12"]


# ── Traducción ───────────────────────────────────────


async def test_translate_endpoints(client, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", TM2, "SR11")

    forward = await client.get(f"{BASE}/translate/namaste-to-tm2/AY001")
    assert [c["target_code"] for c in forward.json()] == ["SR11"]

    reverse = await client.get(f"{BASE}/translate/tm2-to-namaste/SR11")
    assert [c["target_code"] for c in reverse.json()] == ["AY001"]
    assert reverse.json()[0]["direction"] == "reverse"

    general = await client.get(
        f"{BASE}/translate", params={"code": "AY001", "system": "NAMASTE", "targetsystem": TM2}
    )
    assert general.status_code == 200
    assert len(general.json()) == 1


async def test_translate_unknown_code_is_404(client, seed_codes):
    response = await client.get(f"{BASE}/translate/namaste-to-tm2/ZZ999")
    assert response.status_code == 404


# ── Mapeos ───────────────────────────────────────────


async def test_post_mapping_is_idempotent(client, seed_codes):
    payload = {
        "source_system": "NAMASTE",
        "source_code": "AY001",
        "target_system": "TM2",
        "target_code": "SR11",
        "equivalence": "EQUIVALENT",
    }
    first = await client.post(f"{BASE}/mapping", json=payload)
    second = await client.post(f"{BASE}/mapping", json={**payload, "confidence_score": 0.5})

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["id"] == second.json()["id"]
    assert second.json()["confidence_score"] == 0.5
    assert second.json()["source_system"] == NAMASTE

    listed = await client.get(f"{BASE}/mapping")
    assert len(listed.json()) == 1


async def test_post_mapping_unknown_target_is_conflict(client, seed_codes):
    response = await client.post(
        f"{BASE}/mapping",
        json={
            "source_system": NAMASTE,
            "source_code": "AY001",
            "target_system": TM2,
            "target_code": "XX00",
            "equivalence": "EQUIVALENT",
        },
    )
    assert response.status_code == 409


async def test_post_mapping_confidence_out_of_range_is_422(client, seed_codes):
    response = await client.post(
        f"{BASE}/mapping",
        json={
            "source_system": NAMASTE,
            "source_code": "AY001",
            "target_system": TM2,
            "target_code": "SR11",
            "equivalence": "EQUIVALENT",
            "confidence_score": 1.5,
        },
    )
    assert response.status_code == 422

    mappings = await client.get(f"{BASE}/mapping/NAMASTE/AY001")
    assert mappings.json() == []


async def test_mappings_for_code_and_delete(client, seed_codes, add_mapping):
    mapping = await add_mapping(NAMASTE, "AY001", TM2, "SR11")

    both = await client.get(f"{BASE}/mapping/TM2/SR11")
    assert [m["source_code"] for m in both.json()] == ["AY001"]

    deleted = await client.delete(f"{BASE}/mapping/{mapping.id}")
    assert deleted.status_code == 204

    again = await client.delete(f"{BASE}/mapping/{mapping.id}")
    assert again.status_code == 404


async def test_stats(client, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", TM2, "SR11")

    response = await client.get(f"{BASE}/stats")

    data = response.json()
    assert data["namaste_code_count"] == 5
    assert data["siddha_count"] == 1
    assert data["biomedicine_count"] == 3
    assert data["mapping_count"] == 1


async def test_audit_log(client, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", TM2, "SR11")

    response = await client.get(f"{BASE}/audit-log", params={"entity": "concept_mapping"})

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["action"] == "create"


# ── Jobs administrativos ─────────────────────────────


async def test_admin_trigger_returns_queued_job(client, enqueued):
    response = await client.post(f"{BASE}/admin/reload-namaste")

    assert response.status_code == 202
    data = response.json()
    assert data["status"] == "queued"
    assert data["job_type"] == "reload_namaste"
    assert [str(job_id) for job_id in enqueued] == [data["job_id"]]

    job = await client.get(f"{BASE}/admin/jobs/{data['job_id']}")
    assert job.status_code == 200
    assert job.json()["status"] == "queued"


async def test_cancel_queued_job(client, enqueued):
    created = await client.post(f"{BASE}/admin/sync-icd11")
    job_id = created.json()["job_id"]

    cancelled = await client.post(f"{BASE}/admin/jobs/{job_id}/cancel")

    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == JobStatus.CANCELLED.value
    assert cancelled.json()["cancel_requested"] is True


async def test_list_jobs_by_type(client, enqueued):
    await client.post(f"{BASE}/admin/generate-mappings")
    await client.post(f"{BASE}/admin/reload-namaste")

    response = await client.get(f"{BASE}/admin/jobs", params={"job_type": "generate_mappings"})

    assert [j["job_type"] for j in response.json()] == ["generate_mappings"]


async def test_admin_trigger_with_broker_down_is_502(client, monkeypatch):
    from kombu.exceptions import OperationalError

    from app.tasks import terminology_tasks

    class BrokenTask:
        @staticmethod
        def delay(job_id):
            raise OperationalError("Error 111 connecting to localhost:6379")

    monkeypatch.setattr(terminology_tasks, "reload_namaste_task", BrokenTask)

    response = await client.post(f"{BASE}/admin/reload-namaste")
    assert response.status_code == 502

    jobs = await client.get(f"{BASE}/admin/jobs", params={"job_type": "reload_namaste"})
    [job] = jobs.json()
    assert job["status"] == JobStatus.FAILED.value
    assert "Broker" in job["error_message"]


async def test_unknown_job_is_404(client):
    response = await client.get(f"{BASE}/admin/jobs/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404
