"""
Google Sheets export of a round leaderboard.

Uses gspread-asyncio (wraps gspread 6.x) for non-blocking I/O.

Sheet layout
------------
Row 1: Competition · City · Round title
Row 2: Export timestamp
Row 3: blank
Row 4: Column headers
Row 5…: Participant rows (winners highlighted gold/silver/bronze by position)
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

import gspread_asyncio
from google.oauth2.service_account import Credentials
from gspread.exceptions import APIError, WorksheetNotFound

from citycup.config import settings
from citycup.services.round_service import ParticipantRow, RoundDetail

logger = logging.getLogger(__name__)

# ── Colour palette (RGB 0-1 float for Sheets API) ────────────────────────────
COLOUR = {
    "header_bg":  {"red": 0.176, "green": 0.310, "blue": 0.576},
    "header_fg":  {"red": 1.0,   "green": 1.0,   "blue": 1.0},
    "gold":       {"red": 1.0,   "green": 0.843, "blue": 0.0},
    "silver":     {"red": 0.753, "green": 0.753, "blue": 0.753},
    "bronze":     {"red": 0.804, "green": 0.498, "blue": 0.196},
}

MEDAL_COLOURS = [COLOUR["gold"], COLOUR["silver"], COLOUR["bronze"]]

HEADERS = ["Rank", "Name", "MI ID", "Email", "City", "Score", "Winner", "Qualified by", "Notes"]

SCOPES = [
    "https://spreadsheets.google.com/feeds",
    "https://www.googleapis.com/auth/drive",
]


def _make_credentials():
    return Credentials.from_service_account_info(settings.google_credentials, scopes=SCOPES)


async def export_round_to_sheets(detail: RoundDetail) -> Optional[str]:
    """
    Write the round leaderboard to its own worksheet.
    Returns the spreadsheet URL, or None if Sheets is not configured.
    """
    if not settings.sheets_enabled:
        logger.warning("Google Sheets export requested but not configured.")
        return None

    agcm = gspread_asyncio.AsyncioGspreadClientManager(_make_credentials)
    agc  = await agcm.authorize()
    spreadsheet = await agc.open_by_key(settings.GOOGLE_SPREADSHEET_ID)

    r = detail.round
    sheet_title = f"{detail.city_name} R{r.round_number}"[:100]
    try:
        worksheet = await spreadsheet.worksheet(sheet_title)
        await worksheet.clear()
    except WorksheetNotFound:
        worksheet = await spreadsheet.add_worksheet(
            title=sheet_title, rows=max(len(detail.participants) + 10, 100), cols=len(HEADERS)
        )
    sheet_id = worksheet.ws.id

    all_rows: list[list] = [
        [f"🏆 {detail.competition_name} · {detail.city_name} · {r.display_name}"],
        [f"Exported: {datetime.utcnow().strftime('%Y-%m-%d %H:%M')} UTC"],
        [],
        HEADERS,
    ]
    format_requests: list[dict] = [
        _fmt_range(sheet_id, 4, 1, 4, len(HEADERS), bg=COLOUR["header_bg"], fg=COLOUR["header_fg"], bold=True)
    ]

    current_row = 5
    for p in detail.participants:
        all_rows.append(_build_row(p))
        if p.is_winner and p.winner_position and p.winner_position <= 3:
            format_requests.append(
                _fmt_range(sheet_id, current_row, 1, current_row, len(HEADERS),
                           bg=MEDAL_COLOURS[p.winner_position - 1],
                           bold=(p.winner_position == 1))
            )
        current_row += 1

    # gspread 6.x: update(values, range_name)
    await worksheet.update(all_rows, "A1")

    try:
        await spreadsheet.batch_update({"requests": format_requests})
    except APIError as fmt_err:
        # Formatting is cosmetic; the data is already written
        logger.warning("Could not apply formatting: %s", fmt_err)

    logger.info("Round %d exported to sheet %r", r.id, sheet_title)
    return f"https://docs.google.com/spreadsheets/d/{settings.GOOGLE_SPREADSHEET_ID}"


# ── Helpers ───────────────────────────────────────────────────────────────────

def _build_row(p: ParticipantRow) -> List[str]:
    return [
        str(p.rank_in_round) if p.rank_in_round else "—",
        p.full_name,
        p.mi_id or "",
        p.email,
        p.city_name,
        f"{p.score:g}" if p.score is not None else "—",
        f"#{p.winner_position}" if p.is_winner and p.winner_position else ("✓" if p.is_winner else ""),
        p.qualified_by,
        p.notes or "",
    ]


def _fmt_range(
    sheet_id: int,
    start_row: int,
    start_col: int,
    end_row: int,
    end_col: int,
    bg: Optional[dict] = None,
    fg: Optional[dict] = None,
    bold: bool = False,
) -> dict:
    """Build a Sheets API repeatCell request dict."""
    fmt: dict = {}
    if bg:
        fmt["backgroundColor"] = bg
    if fg or bold:
        fmt["textFormat"] = {}
        if fg:
            fmt["textFormat"]["foregroundColor"] = fg
        if bold:
            fmt["textFormat"]["bold"] = True

    return {
        "repeatCell": {
            "range": {
                "sheetId":          sheet_id,
                "startRowIndex":    start_row - 1,
                "endRowIndex":      end_row,
                "startColumnIndex": start_col - 1,
                "endColumnIndex":   end_col,
            },
            "cell": {"userEnteredFormat": fmt},
            "fields": "userEnteredFormat(backgroundColor,textFormat)",
        }
    }
