from typing import Dict, Iterable, List, Optional
import csv
import io

from models import Player

CSV_HEADER = ["rank", "name", "rollNumber", "score", "status"]


def build_leaderboard(players: Iterable[Player], limit: Optional[int] = None) -> List[Dict]:
    """Ranked rows, score descending then roll number ascending.

    Ranks are dense: equal scores share a rank and the next score gets the
    following rank.
    """
    ordered = sorted(players, key=lambda p: (-p.score, p.roll_number))
    rows = []
    rank = 0
    previous_score = None
    for player in ordered:
        if player.score != previous_score:
            rank += 1
            previous_score = player.score
        rows.append({
            "rank": rank,
            "name": player.name,
            "roll_number": player.roll_number,
            "score": player.score,
            "status": player.status.value,
        })
    if limit is not None:
        return rows[:limit]
    return rows


def to_csv(rows: List[Dict]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for row in rows:
        writer.writerow([row["rank"], row["name"], row["roll_number"], row["score"], row["status"]])
    return buf.getvalue()
