"""
Contact disclosure gate.

Reporter contact details are released only after a match is confirmed. The
gate itself (email relay, in-app reveal, ...) lives outside the engine; the
engine calls ``on_match_confirmed`` exactly once per confirmed match.
"""

from abc import ABC, abstractmethod

from loguru import logger

from trackback.models.item import ContactInfo


class DisclosureGate(ABC):
    """Receives both reporters' contact payloads once a match is confirmed."""

    @abstractmethod
    def on_match_confirmed(
        self,
        match_id: str,
        lost_reporter_contact: ContactInfo,
        found_reporter_contact: ContactInfo,
    ) -> None:
        """Release contact details between the two reporters of ``match_id``."""


class LoggingDisclosureGate(DisclosureGate):
    """Default gate that only records the trigger. Contact values are never logged."""

    def on_match_confirmed(
        self,
        match_id: str,
        lost_reporter_contact: ContactInfo,
        found_reporter_contact: ContactInfo,
    ) -> None:
        logger.info(
            f"Disclosure triggered for match {match_id} "
            f"(lost prefers {lost_reporter_contact.preferred_contact}, "
            f"found prefers {found_reporter_contact.preferred_contact})"
        )
