from __future__ import annotations

from dataclasses import dataclass

from stowqr.services.inventory_service import (
    Area,
    InventoryState,
    Item,
    Location,
    Section,
    areas_by_location,
    items_by_area,
    items_by_section,
    sections_by_area,
)
from stowqr.services.pool_service import now_iso


@dataclass(frozen=True)
class SectionReport:
    section: Section
    items: list[Item]

    def to_dict(self) -> dict:
        return {'section': self.section.to_dict(), 'items': [item.to_dict() for item in self.items]}


@dataclass(frozen=True)
class AreaReport:
    area: Area
    sections: list[SectionReport]
    # Items placed directly in the area.
    items: list[Item]

    @property
    def item_count(self) -> int:
        return len(self.items) + sum(len(section.items) for section in self.sections)

    def to_dict(self) -> dict:
        return {
            'area': self.area.to_dict(),
            'sections': [section.to_dict() for section in self.sections],
            'items': [item.to_dict() for item in self.items],
            'itemCount': self.item_count,
        }


@dataclass(frozen=True)
class LocationReport:
    location: Location
    areas: list[AreaReport]

    @property
    def item_count(self) -> int:
        return sum(area.item_count for area in self.areas)

    def to_dict(self) -> dict:
        return {
            'location': self.location.to_dict(),
            'areas': [area.to_dict() for area in self.areas],
            'itemCount': self.item_count,
        }


@dataclass(frozen=True)
class InventoryReport:
    generated_at: str
    total_locations: int
    total_areas: int
    total_sections: int
    total_items: int
    locations: list[LocationReport]

    def to_dict(self) -> dict:
        return {
            'generatedAt': self.generated_at,
            'totalLocations': self.total_locations,
            'totalAreas': self.total_areas,
            'totalSections': self.total_sections,
            'totalItems': self.total_items,
            'locations': [location.to_dict() for location in self.locations],
        }


def inventory_report(state: InventoryState, *, now: str | None = None) -> InventoryReport:
    locations = []
    for location in state.locations:
        areas = []
        for area in areas_by_location(state, location.id):
            sections = [
                SectionReport(section=section, items=items_by_section(state, section.id))
                for section in sections_by_area(state, area.id)
            ]
            areas.append(AreaReport(area=area, sections=sections, items=items_by_area(state, area.id)))
        locations.append(LocationReport(location=location, areas=areas))

    return InventoryReport(
        generated_at=now or now_iso(),
        total_locations=len(state.locations),
        total_areas=len(state.areas),
        total_sections=len(state.sections),
        total_items=len(state.items),
        locations=locations,
    )
