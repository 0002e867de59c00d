"""ORM model registry: import all models so Alembic autogenerate discovers them."""

from bulk_export.models.export_job import ExportJob

__all__ = [
    "ExportJob",
]
