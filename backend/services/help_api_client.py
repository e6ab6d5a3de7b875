"""Client for the structured help API and rendering of its records to text."""
import logging
import re
from typing import List, Optional

import httpx
from bs4 import BeautifulSoup
from pydantic import ValidationError

from models.corpus import HelpRecord
from config import (
    HELP_API_BASE_URL,
    HELP_API_TOKEN,
    HELP_API_LANGUAGE,
    API_PARTITIONS,
    FETCH_TIMEOUT,
)

logger = logging.getLogger(__name__)

WHITESPACE_PATTERN = re.compile(r"\s+")
UNSAFE_NAME_PATTERN = re.compile(r"[^a-zA-Z0-9_]")


class SourceFetchError(RuntimeError):
    """The upstream source could not deliver a partition's records."""

    def __init__(self, partition: str, message: str, status_code: Optional[int] = None):
        self.partition = partition
        self.status_code = status_code
        super().__init__(message)


def strip_html(html: str) -> str:
    """
    Convert an HTML fragment to plain text.

    Drops script/style blocks, decodes entities and collapses whitespace.
    """
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    text = soup.get_text(" ")
    return WHITESPACE_PATTERN.sub(" ", text.replace("\xa0", " ")).strip()


def record_to_text(record: HelpRecord, language: str = HELP_API_LANGUAGE) -> str:
    """
    Render a help record as markdown-like plain text for chunking.

    Module name/URL come first, then one `##` section per localization in the
    requested language with its FAQ items as `###` sections.
    """
    parts: List[str] = []

    if record.module.name:
        parts.append(f"Modul: {record.module.name}")
        if record.module.url:
            parts.append(f"URL: {record.module.url}")

    for localization in record.data:
        if localization.id_lang != language:
            continue

        if localization.header.name:
            parts.append(f"\n## {localization.header.name}")

        description = strip_html(localization.header.description)
        if description:
            parts.append(description)

        for item in localization.items or []:
            if item.header:
                parts.append(f"\n### {item.header}")
            answer = strip_html(item.description)
            if answer:
                parts.append(answer)

    return "\n\n".join(parts).strip()


def record_unit_name(record: HelpRecord) -> str:
    """Sanitized name used as the chunk id prefix for a record."""
    name = record.module.name or record.module.url or f"item_{record.id}"
    return UNSAFE_NAME_PATTERN.sub("_", name)


def record_display_name(record: HelpRecord, language: str = HELP_API_LANGUAGE) -> str:
    """Human-readable name shown in citations."""
    if record.module.name:
        return record.module.name
    if record.module.url:
        return record.module.url
    for localization in record.data:
        if localization.id_lang == language and localization.header.name:
            return localization.header.name
    return f"Item {record.id}"


def parse_records(payload, partition: str) -> List[HelpRecord]:
    """
    Validate raw API records, skipping the malformed ones.

    Args:
        payload: Decoded JSON body; anything but a list counts as no records
        partition: Partition name, for logging

    Returns:
        Records that passed validation, in their original order
    """
    if not isinstance(payload, list):
        logger.warning(f"Help API returned {type(payload).__name__} for {partition}, expected a list")
        return []

    records = []
    for position, raw in enumerate(payload):
        try:
            records.append(HelpRecord.model_validate(raw))
        except ValidationError as e:
            logger.warning(
                f"Skipping malformed help record #{position} in {partition}: "
                f"{e.error_count()} validation errors"
            )
    return records


class HelpApiClient:
    """Fetches help records for an audience partition."""

    def __init__(
        self,
        base_url: str = HELP_API_BASE_URL,
        token: Optional[str] = HELP_API_TOKEN,
        language: str = HELP_API_LANGUAGE,
        partitions: Optional[dict] = None,
        timeout: float = FETCH_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize the help API client.

        Args:
            base_url: Endpoint returning the record list
            token: Bearer token sent with each request
            language: Language code requested and rendered
            partitions: Partition name -> API id_type mapping
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        if not base_url:
            raise ValueError("HELP_API_BASE_URL must be set")

        self.base_url = base_url
        self.token = token
        self.language = language
        self.partitions = dict(partitions or API_PARTITIONS)
        self.timeout = timeout
        self.transport = transport

    def id_type(self, partition: str) -> int:
        try:
            return self.partitions[partition]
        except KeyError:
            raise ValueError(f"Unknown partition '{partition}'")

    def fetch_records(self, partition: str) -> List[HelpRecord]:
        """
        Fetch and validate the full record set of a partition.

        Args:
            partition: Partition name (e.g. "user" or "admin")

        Returns:
            Validated records

        Raises:
            ValueError: If the partition is not configured
            SourceFetchError: If the request fails or returns a non-2xx status
        """
        params = {"id_type": str(self.id_type(partition)), "id_language": self.language}
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.get(self.base_url, params=params, headers=headers)
        except httpx.RequestError as e:
            logger.error(f"Help API request for {partition} failed: {e}")
            raise SourceFetchError(partition, f"Failed to fetch help data: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            message = f"Failed to fetch help data: {response.status_code} {response.reason_phrase}"
            logger.error(f"{message} (partition={partition})")
            raise SourceFetchError(partition, message, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise SourceFetchError(partition, f"Help API returned invalid JSON: {e}") from e

        records = parse_records(payload, partition)
        logger.info(f"Fetched {len(records)} help records for {partition}")
        return records
