"""Suggest alternate destinations when a critical alert fires."""

from __future__ import annotations

from models.readings import AlertSeverity, FacilityCandidate
from services.facilities import FacilityIndex
from services.processor import SessionView


class RedirectAdvisor:
    """Reads the current session view and proposes nearby facilities.

    The advisor only returns candidates; applying a redirect is up to the
    caller.
    """

    def __init__(self, index: FacilityIndex, limit: int = 5) -> None:
        self.index = index
        self.limit = limit

    def should_suggest(self, view: SessionView, redirect_accepted: bool = False) -> bool:
        if redirect_accepted:
            return False
        alert = view.latest_alert
        if alert is None or alert.severity is not AlertSeverity.critical:
            return False
        return view.location is not None

    def suggest(
        self,
        view: SessionView,
        redirect_accepted: bool = False,
        limit: int | None = None,
    ) -> list[FacilityCandidate]:
        location = view.location
        if location is None or not self.should_suggest(view, redirect_accepted):
            return []
        return self.index.nearest(location.lat, location.lng, limit or self.limit)
