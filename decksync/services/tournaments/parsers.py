"""
HTML parsers for Limitless TCG tournament pages.

All parsers are pure functions of the fetched document: parsing the same
document twice yields the same output. Problems with a single row or card line
are returned as ParseError values next to the valid data instead of being
raised, so one malformed row never hides its siblings.
"""
import re
from datetime import date, datetime
from typing import Any, Iterator, Optional, Union
from urllib.parse import urljoin

import structlog
from selectolax.parser import HTMLParser

from decksync.models.tournament import TournamentType
from decksync.services.tournaments.errors import ParseError
from decksync.services.tournaments.limitless_client import LIMITLESS_SOURCE
from decksync.services.tournaments.types import (
    CardMention,
    ListingPage,
    ParsedDeck,
    RawDocument,
    StandingEntry,
    StandingsPage,
    TournamentStub,
)

logger = structlog.get_logger()

TOURNAMENT_ID_RE = re.compile(r"/tournaments/([A-Za-z0-9_-]+)/?(?:[?#].*)?$")
PLAYER_ID_RE = re.compile(r"/players/(\d+)", re.IGNORECASE)
DECKLIST_ID_RE = re.compile(r"decks/list/(\d+)", re.IGNORECASE)
ORDINAL_SUFFIX_RE = re.compile(r"(\d+)(st|nd|rd|th)\b", re.IGNORECASE)

# Checked in order; "Regional Championship" is a regional
TOURNAMENT_TYPE_PATTERNS = (
    (re.compile(r"\bregionals?\b"), TournamentType.REGIONAL),
    (re.compile(r"treasure\s*cup"), TournamentType.TREASURE_CUP),
    (re.compile(r"\bchampionships?\b"), TournamentType.CHAMPIONSHIP),
)

EVENT_DATE_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%d %b %Y")


def extract_text(element: Any, selector: Optional[str] = None, default: str = "") -> str:
    """Extract stripped text from an HTML element or one of its descendants."""
    if element is None:
        return default

    if selector:
        found = element.css_first(selector)
        if found is None:
            return default
        element = found

    text = element.text(strip=True)
    return text if text else default


def extract_attr(element: Any, attr: str, selector: Optional[str] = None) -> Optional[str]:
    """Extract a non-blank attribute from an HTML element or a descendant."""
    if element is None:
        return None

    if selector:
        element = element.css_first(selector)
        if element is None:
            return None

    value = element.attributes.get(attr)
    if value is None:
        return None
    value = value.strip()
    return value or None


def to_int(value: Optional[str]) -> Optional[int]:
    """Parse the digits of a value like "1,024" or "12th"; None when absent."""
    if not value:
        return None
    digits = re.sub(r"[^0-9]", "", value)
    if not digits:
        return None
    return int(digits)


def normalize_whitespace(value: Optional[str]) -> str:
    if not value:
        return ""
    return re.sub(r"\s+", " ", value).strip()


def detect_tournament_type(name: Optional[str]) -> Optional[TournamentType]:
    """Event tier from a tournament name; None for local and online events."""
    if not name:
        return None
    lowered = name.lower()
    for pattern, tournament_type in TOURNAMENT_TYPE_PATTERNS:
        if pattern.search(lowered):
            return tournament_type
    return None


def parse_event_date(value: Optional[str]) -> Optional[date]:
    """
    Parse an event date as the site prints it.

    Accepts ISO dates ("2024-05-04", optionally with a time) and written dates
    such as "May 4th, 2024" or "4 May 2024". Anything after a bullet is
    ignored, so "May 4, 2024 • 128 Players" also works.
    """
    if not value:
        return None
    value = normalize_whitespace(value.split("•")[0])
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        pass

    value = ORDINAL_SUFFIX_RE.sub(r"\1", value)
    for fmt in EVENT_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


# -----------------------------------------------------------------------------
# Tournament listing
# -----------------------------------------------------------------------------

def iter_listing_rows(document: RawDocument) -> Iterator[Union[TournamentStub, ParseError]]:
    """
    Yield a TournamentStub or ParseError for each row of the listing table.

    The generator re-parses the document on every call, so it can be restarted
    and always yields the same sequence.
    """
    tree = HTMLParser(document.text)

    for index, row in enumerate(tree.css("table.completed-tournaments tbody tr"), start=1):
        cells = row.css("td")
        if not cells:
            # Header or spacer row
            continue

        row_key = f"listing row {index}"
        link = row.css_first("a[href*='/tournaments/']")
        href = extract_attr(link, "href")
        match = TOURNAMENT_ID_RE.search(href) if href else None
        if not match:
            yield ParseError(
                "Row has no tournament link, external id missing",
                source=LIMITLESS_SOURCE,
                key=row_key,
            )
            continue

        external_id = match.group(1)
        name = normalize_whitespace(extract_attr(row, "data-name") or extract_text(link))
        if not name:
            yield ParseError("Tournament name missing", source=LIMITLESS_SOURCE, key=f"tournament {external_id}")
            continue

        date_attr = extract_attr(row, "data-date")
        event_date = parse_event_date(date_attr)
        if event_date is None:
            yield ParseError(
                f"Tournament date missing or invalid ({date_attr!r})",
                source=LIMITLESS_SOURCE,
                key=f"tournament {external_id}",
            )
            continue

        region = extract_attr(row, "data-region")
        country = extract_attr(row, "data-country")
        players = extract_attr(row, "data-players")
        if players is None and len(cells) > 4:
            players = cells[4].text(strip=True)

        winner_anchor = row.css_first("td.winner a")
        winner_href = extract_attr(winner_anchor, "href")
        winner_name = normalize_whitespace(extract_text(winner_anchor)) or extract_attr(row, "data-winner")

        yield TournamentStub(
            external_id=external_id,
            name=name,
            date=event_date,
            location=country or region or "",
            format=extract_attr(row, "data-format"),
            player_count=to_int(players),
            url=urljoin(document.url, href),
            tournament_type=detect_tournament_type(name),
            region=region,
            country=country,
            # The site marks estimated attendance with a span.apc badge
            player_count_approx=row.css_first("span.apc") is not None,
            winner_name=winner_name,
            winner_url=urljoin(document.url, winner_href) if winner_href else None,
        )


def parse_listing(document: RawDocument, page: int = 1) -> ListingPage:
    """
    Parse a completed-tournaments listing page.

    Args:
        document: Fetched listing page
        page: Page number the document was fetched for

    Returns:
        ListingPage with valid stubs in page order, per-row errors and the
        total page count announced by the pagination widget
    """
    tournaments = []
    errors = []
    for item in iter_listing_rows(document):
        if isinstance(item, ParseError):
            errors.append(item)
        else:
            tournaments.append(item)

    tree = HTMLParser(document.text)
    max_pages = to_int(extract_attr(tree.css_first("ul.pagination"), "data-max")) or page

    logger.debug(
        "Parsed tournament listing",
        page=page,
        tournaments=len(tournaments),
        errors=len(errors),
        max_pages=max_pages,
    )
    return ListingPage(tournaments=tuple(tournaments), errors=tuple(errors), max_pages=max_pages)


# -----------------------------------------------------------------------------
# Standings and decklists
# -----------------------------------------------------------------------------

def parse_standings(document: RawDocument) -> StandingsPage:
    """
    Parse the standings table of a tournament page.

    Rows without a player name are kept; deciding whether a deck without an
    owner can be stored is left to parse_decklist. The event name and date of
    the page header are returned too, so callers can tell whether the page
    still shows the tournament they stored under this id.
    """
    tree = HTMLParser(document.text)
    entries = []
    errors = []

    infobox = tree.css_first(".infobox")
    event_name = normalize_whitespace(extract_text(infobox, ".infobox-heading")) or None
    event_date = parse_event_date(
        extract_attr(infobox, "data-date") or extract_text(infobox, ".infobox-line")
    )

    for index, row in enumerate(tree.css("table.tournament-results tbody tr"), start=1):
        cells = row.css("td")
        if len(cells) < 4:
            continue

        placement_text = cells[0].text(strip=True)
        placement = to_int(placement_text)
        if placement_text and placement is None:
            errors.append(ParseError(
                f"Unreadable placement {placement_text!r}",
                source=LIMITLESS_SOURCE,
                key=f"standing row {index}",
            ))

        player_anchor = cells[1].css_first("a")
        player_name = normalize_whitespace(extract_text(player_anchor) or cells[1].text(strip=True))
        player_href = extract_attr(player_anchor, "href")
        player_id_match = PLAYER_ID_RE.search(player_href) if player_href else None

        deck_link = row.css_first("a.deck-link")
        archetype = normalize_whitespace(extract_text(deck_link)) or None

        list_href = extract_attr(cells[3], "href", "a")
        list_match = DECKLIST_ID_RE.search(list_href) if list_href else None

        entries.append(StandingEntry(
            placement=placement,
            player_name=player_name,
            player_url=urljoin(document.url, player_href) if player_href else None,
            player_id=player_id_match.group(1) if player_id_match else None,
            archetype=archetype,
            decklist_id=list_match.group(1) if list_match else None,
            decklist_url=urljoin(document.url, list_href) if list_match else None,
        ))

    return StandingsPage(
        entries=tuple(entries),
        errors=tuple(errors),
        event_name=event_name,
        event_date=event_date,
    )


def player_identity(entry: StandingEntry) -> Optional[str]:
    """
    Stable per-tournament identity for a standing.

    Prefers the Limitless player id; falls back to the normalized player name
    for players without a profile link.
    """
    if entry.player_id:
        return entry.player_id
    name = normalize_whitespace(entry.player_name).lower()
    if not name:
        return None
    return "name:" + name.replace(" ", "-")


def _card_sections(tree: HTMLParser) -> Iterator[tuple[str, Any]]:
    columns = tree.css(".decklist-column")
    if not columns:
        for card in tree.css(".decklist-card"):
            yield "", card
        return
    for column in columns:
        heading = extract_text(column, ".decklist-column-heading")
        for card in column.css(".decklist-card"):
            yield heading, card


def parse_decklist(document: RawDocument, entry: StandingEntry) -> ParsedDeck:
    """
    Parse a decklist page for the player of a standing row.

    Args:
        document: Fetched decklist page
        entry: Standing row the decklist was linked from

    Returns:
        ParsedDeck with the leader, every readable card line, line-level
        errors and warnings

    Raises:
        ParseError: When the deck has no identifiable player and must be
            skipped as a whole
    """
    external_player_id = player_identity(entry)
    deck_key = f"decklist {entry.decklist_id or document.url}"
    if external_player_id is None:
        raise ParseError(
            "Decklist has no identifiable player",
            source=LIMITLESS_SOURCE,
            key=deck_key,
        )

    tree = HTMLParser(document.text)
    leader: Optional[CardMention] = None
    cards = []
    errors = []
    warnings = []

    for line_no, (heading, element) in enumerate(_card_sections(tree), start=1):
        code = extract_attr(element, "data-id")
        raw_name = normalize_whitespace(
            extract_text(element, ".card-name") or extract_attr(element, "data-name") or ""
        )
        if not raw_name:
            errors.append(ParseError(
                f"Card line {line_no} ({code or 'no code'}) has no card name",
                source=LIMITLESS_SOURCE,
                key=deck_key,
            ))
            continue

        count_text = extract_attr(element, "data-count") or extract_text(element, ".card-count")
        quantity = to_int(count_text)
        if not quantity:
            errors.append(ParseError(
                f"Card line {raw_name!r} has no valid quantity ({count_text!r})",
                source=LIMITLESS_SOURCE,
                key=deck_key,
            ))
            continue

        mention = CardMention(raw_name=raw_name, raw_set_hint=code, quantity=quantity)
        if leader is None and "leader" in heading.lower():
            leader = mention
        cards.append(mention)

    if not cards:
        warnings.append(f"{deck_key} for {entry.player_name or external_player_id} has no card lines")

    return ParsedDeck(
        player=entry.player_name,
        external_player_id=external_player_id,
        placement=entry.placement,
        leader=leader,
        cards=tuple(cards),
        archetype=entry.archetype,
        decklist_url=entry.decklist_url or document.url,
        errors=tuple(errors),
        warnings=tuple(warnings),
    )
