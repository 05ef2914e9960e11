"""Normalizer turning iCalendar documents into event records."""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Union

from icalendar import Calendar

from processor.models import EventRecord

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


class ParseError(Exception):
    """Raised when a feed document cannot be parsed."""


def to_utc(value: Union[date, datetime]) -> datetime:
    """
    Convert an iCalendar date or date-time to an aware UTC datetime.

    Floating date-times are taken as UTC and DATE values become midnight UTC.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a UTC datetime in the fixed-width canonical form."""
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 date or date-time into an aware UTC datetime.

    Accepts the canonical form as well as shorter variants such as
    ``2024-01-01`` or ``2024-01-01T10:00``. Naive values are taken as UTC.

    Raises:
        ValueError: If the value is not ISO-8601
    """
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return to_utc(datetime.fromisoformat(text))


class FeedNormalizer:
    """Parses calendar feeds into normalized EventRecord objects."""

    CONFIRMED_STATUS = 'CONFIRMED'
    CONFIRMED_COLOR = 'green'
    UNCONFIRMED_COLOR = 'red'

    def normalize(self, raw_document: Union[str, bytes], source_prefix: str) -> List[EventRecord]:
        """
        Parse a calendar document into event records.

        Args:
            raw_document: iCalendar document as fetched
            source_prefix: Tag prepended to every title, e.g. "Sonarr"

        Returns:
            List of EventRecord objects, one per VEVENT component

        Raises:
            ParseError: If the document or any of its events is malformed
        """
        try:
            calendar = Calendar.from_ical(raw_document)
        except (ValueError, IndexError, TypeError) as e:
            raise ParseError(f"Malformed calendar document: {e}") from e

        if calendar.name != 'VCALENDAR':
            raise ParseError(
                f"Expected a VCALENDAR document, got {calendar.name}"
            )

        for component in calendar.walk():
            if component.errors:
                raise ParseError(
                    f"Malformed {component.name} component: {component.errors}"
                )

        records = [
            self._normalize_event(component, source_prefix)
            for component in calendar.walk('VEVENT')
        ]

        logger.info(
            f"Normalized {len(records)} events from [{source_prefix}] feed"
        )
        return records

    def _normalize_event(self, component, source_prefix: str) -> EventRecord:
        summary = self._text(component, 'SUMMARY')
        raw_start = self._date_value(component, 'DTSTART', summary)
        if raw_start is None:
            raise ParseError(f"Event '{summary}' has no DTSTART")

        start = to_utc(raw_start)
        end = self._resolve_end(component, summary, raw_start, start)

        return EventRecord(
            title=f"[{source_prefix}] {summary}",
            start=format_timestamp(start),
            end=format_timestamp(end),
            color=self._color_for(component.get('STATUS')),
            description=self._text(component, 'DESCRIPTION'),
            location=self._text(component, 'LOCATION')
        )

    def _resolve_end(self, component, summary: str, raw_start, start: datetime) -> datetime:
        """
        Determine the end instant of an event.

        Falls back to DURATION, then to one day for all-day events, and
        finally to the start instant.
        """
        raw_end = self._date_value(component, 'DTEND', summary)
        if raw_end is not None:
            return to_utc(raw_end)

        duration = component.get('DURATION')
        if isinstance(getattr(duration, 'dt', None), timedelta):
            return start + duration.dt

        if not isinstance(raw_start, datetime):
            return start + timedelta(days=1)

        return start

    @staticmethod
    def _date_value(component, name: str, summary: str) -> Optional[Union[date, datetime]]:
        """
        Read a date or date-time property.

        Returns:
            The property value, or None if the property is absent

        Raises:
            ParseError: If the property is present but not a date or date-time
        """
        prop = component.get(name)
        if prop is None:
            return None
        try:
            value = prop.dt
        except (AttributeError, ValueError) as e:
            raise ParseError(f"Event '{summary}' has an invalid {name}: {e}") from e
        if not isinstance(value, date):
            raise ParseError(f"Event '{summary}' has an invalid {name}: {value!r}")
        return value

    def _color_for(self, status: Optional[str]) -> str:
        if status is not None and str(status).strip().upper() == self.CONFIRMED_STATUS:
            return self.CONFIRMED_COLOR
        return self.UNCONFIRMED_COLOR

    @staticmethod
    def _text(component, name: str) -> str:
        value = component.get(name)
        return str(value) if value is not None else ''
