from __future__ import annotations

"""Admin endpoints for spreadsheet imports and exports of the catalog."""

from fastapi import APIRouter, Depends, File, Response, UploadFile

from .deps import get_scope, get_services
from .repos.catalog_repo import Scope
from .services import CatalogServices
from .services.import_profiles import get_profile
from .services.tabular import parse, render_sample
from .utils.responses import ok

router = APIRouter()

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"


def _csv(content: str, filename: str) -> Response:
    return Response(
        content,
        media_type=CSV_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/api/outlet/{tenant_id}/catalog/import/{sheet}")
async def import_sheet(
    sheet: str,
    file: UploadFile = File(...),
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    """Create or update every row of an uploaded CSV sheet.

    Row failures do not abort the import; they are returned under
    ``errors`` with the spreadsheet row number.
    """

    profile = get_profile(sheet)
    rows = parse(await file.read(), profile.fields)
    result = await services.reconciler.run(profile, scope, rows)
    return ok(result.to_dict())


@router.post("/api/outlet/{tenant_id}/catalog/import/{sheet}/dryrun")
async def import_sheet_dryrun(
    sheet: str,
    file: UploadFile = File(...),
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> dict:
    """Validate a CSV sheet without mutating the database."""

    profile = get_profile(sheet)
    rows = parse(await file.read(), profile.fields)
    return ok(services.reconciler.dry_run(profile, rows))


@router.get("/api/outlet/{tenant_id}/catalog/import/{sheet}/sample")
async def import_sheet_sample(tenant_id: str, sheet: str) -> Response:
    profile = get_profile(sheet)
    return _csv(render_sample(profile.fields), f"{sheet}_sample.csv")


@router.get("/api/outlet/{tenant_id}/catalog/export/{sheet}")
async def export_sheet(
    sheet: str,
    scope: Scope = Depends(get_scope),
    services: CatalogServices = Depends(get_services),
) -> Response:
    content = await services.catalog.export_sheet(scope, sheet)
    return _csv(content, f"{sheet}.csv")
