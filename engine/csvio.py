"""
CSV reading and writing shared by pivot export and record import.

Fields containing a comma, a double quote or a line break are wrapped in
quotes with inner quotes doubled; parse_csv() reads the same dialect back.
"""

import csv
import io

from formula.values import to_text

_BOM = "\ufeff"


def write_csv(rows) -> str:
    """Render rows (lists of values) as CSV text without a trailing newline.
    None renders as an empty field; numbers render without a trailing .0."""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    for row in rows:
        fields = [to_text(v) for v in row]
        if fields == [""]:
            # csv quotes a lone empty field; a missing value is written empty.
            output.write("\n")
        else:
            writer.writerow(fields)
    text = output.getvalue()
    return text[:-1] if text.endswith("\n") else text


def parse_csv(text: str) -> list:
    """Parse CSV text into rows of strings. A leading BOM and blank lines are ignored."""
    if text.startswith(_BOM):
        text = text[len(_BOM):]
    return [row for row in csv.reader(io.StringIO(text)) if row]


def parse_csv_records(text: str) -> list:
    """Parse CSV with a header row into dicts keyed by header.

    Short rows are padded with empty strings; extra trailing fields are dropped.
    """
    rows = parse_csv(text)
    if not rows:
        return []
    headers = [h.strip() for h in rows[0]]
    records = []
    for row in rows[1:]:
        padded = row + [""] * (len(headers) - len(row))
        records.append(dict(zip(headers, padded)))
    return records
