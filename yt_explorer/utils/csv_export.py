import csv
import re

CSV_COLUMNS = ["Author", "Comment", "Likes", "Published Date", "Is Reply", "Parent Comment ID"]


def comments_csv_filename(title: str) -> str:
    """'My Video!' -> 'My_Video__comments.csv'"""
    return re.sub(r"[^a-z0-9]", "_", title or "", flags=re.IGNORECASE) + "_comments.csv"


def write_comments_csv(fh, comments) -> int:
    """Write comments to an open text file as CSV. Returns the row count."""
    writer = csv.writer(fh, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    count = 0
    for c in comments:
        writer.writerow([
            c.author_display_name,
            c.text_original,
            c.like_count,
            c.published_at,
            "Yes" if c.parent_id else "No",
            c.parent_id or "",
        ])
        count += 1
    return count
