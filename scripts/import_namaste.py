"""
Script para importar el vocabulario NAMASTE desde CSV a la tabla namaste_codes.

Uso:
    python scripts/import_namaste.py
    python scripts/import_namaste.py --csv data/namaste_codes.csv
    python scripts/import_namaste.py --dry-run   # solo valida el CSV

Requisitos:
    - La migración a1f0c3d2b4e5 debe estar aplicada
    - Columnas del CSV: code,display,definition,system,category,subcategory,
      who_terminology_code,icd11_tm2_code,icd11_biomedicine_code

En producción la recarga se dispara como job:
    POST /api/v1/terminology/admin/reload-namaste
"""

import argparse
import sys
from pathlib import Path

# Agregar el directorio raíz al path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio
from sqlalchemy import select, func
from app.database import async_session_factory
from app.models.namaste import NamasteCode
from app.services import code_registry_service, ingestion_service
from app.core.exceptions import DependencyException, ValidationException


DEFAULT_CSV = Path(__file__).resolve().parent.parent / "data" / "namaste_codes.csv"


async def import_namaste(csv_path: Path, dry_run: bool = False) -> None:
    try:
        rows = ingestion_service.parse_namaste_csv(csv_path)
    except DependencyException as exc:
        print(f"ERROR: {exc.detail}")
        sys.exit(1)

    print(f"Leídos {len(rows)} códigos válidos del CSV")
    if dry_run:
        hints = sum(1 for r in rows if r.icd11_tm2_code or r.icd11_biomedicine_code)
        print(f"Filas con sugerencias de mapeo CIE-11: {hints}")
        return

    async with async_session_factory() as session:
        count_result = await session.execute(
            select(func.count()).select_from(NamasteCode)
        )
        print(f"Códigos existentes en BD: {count_result.scalar() or 0}")

        upserted = 0
        skipped = 0
        for row in rows:
            try:
                await code_registry_service.upsert_namaste(session, row.entry)
                upserted += 1
            except ValidationException as exc:
                print(f"  Línea {row.line} omitida: {exc.detail}")
                skipped += 1
        await session.commit()

        print(f"Insertados/actualizados: {upserted}")
        print(f"Omitidos: {skipped}")

        final_count = await session.execute(
            select(func.count()).select_from(NamasteCode)
        )
        print(f"Total códigos en BD: {final_count.scalar() or 0}")

    print("Importación completada")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Importar vocabulario NAMASTE a la BD")
    parser.add_argument("--csv", type=Path, default=DEFAULT_CSV, help="Ruta al CSV")
    parser.add_argument("--dry-run", action="store_true", help="Solo validar el CSV")
    args = parser.parse_args()

    asyncio.run(import_namaste(args.csv, args.dry_run))
