from models.catalog import (
	QUARTERS,
	WEEKS_PER_QUARTER,
	Catalog,
	CatalogEntry,
	Category,
	Subject,
	normalize_quarter,
)
from models.projection import GradeHistoryEntry, PlacedUnit, Projection, Student
from models.violation import PlacementViolation

__all__ = [
	"QUARTERS",
	"WEEKS_PER_QUARTER",
	"Catalog",
	"CatalogEntry",
	"Category",
	"Subject",
	"normalize_quarter",
	"GradeHistoryEntry",
	"PlacedUnit",
	"Projection",
	"Student",
	"PlacementViolation",
]
