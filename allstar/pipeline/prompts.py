"""
Prompt builder - the cached instruction block and the per-listing block.
"""
from typing import Optional

from ..models.grading import Feedback
from ..models.listing import Listing


GRADER_ROLE = "You are an expert automotive parts grader. Grade listings based on these criteria:"

OUTPUT_CONTRACT = """Respond with ONLY a JSON object (no markdown, no code fences) in this exact format:
{
  "score": <number 0-100>,
  "grade": "<A|B|C|D|F>",
  "rationale": "<1-2 sentence explanation>",
  "flags": [<array of string flags like "price_high", "no_image", "vague_title", etc.>]
}
"""


def _number(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def build_instructions(
    criteria: str,
    disagreements: list[Feedback],
    agreements: list[Feedback],
) -> str:
    """
    Render the system prompt for a whole run.

    Pure: identical inputs give byte-identical output, which keeps the
    prefix cacheable on the provider side. Disagreements come before
    agreements and each list keeps the order it was given in.
    """
    lines = [GRADER_ROLE, "", criteria, ""]

    if disagreements:
        lines.append("--- LEARN FROM THESE PAST DISAGREEMENTS ---")
        lines.append(
            "These are cases where the buyer disagreed with the AI's grade. "
            "Adjust your grading to align with the buyer's expectations."
        )
        lines.append("")
        for d in disagreements:
            line = (
                f'- "{d.listing_title}": AI scored {_number(d.score)} ({d.grade}), '
                f"buyer adjusted to {_number(d.adjusted_score)}"
            )
            if d.notes:
                line += f' - Notes: "{d.notes}"'
            lines.append(line)
        lines.append("")

    if agreements:
        lines.append("--- EXAMPLES OF WELL-GRADED LISTINGS ---")
        lines.append("These are cases where the buyer agreed with the AI's grade.")
        lines.append("")
        for a in agreements:
            lines.append(f'- "{a.listing_title}": Score {_number(a.score)} ({a.grade})')
        lines.append("")

    return "\n".join(lines) + "\n" + OUTPUT_CONTRACT


def build_item_prompt(listing: Listing) -> str:
    """Render the user message describing one listing."""
    def field(value: Optional[str]) -> str:
        return value if value else "N/A"

    return "\n".join([
        "--- LISTING TO GRADE ---",
        f"Title: {listing.title}",
        f"Price: {field(listing.price)}",
        f"Condition: {field(listing.condition)}",
        f"Location: {field(listing.location)}",
        f"Seller: {field(listing.seller_name)}",
        f"Description: {field(listing.description)}",
        f"Image: {'Yes (1)' if listing.image else 'No'}",
        f"URL: {field(listing.link)}",
        f"Source: {listing.source.value}",
    ]) + "\n"
