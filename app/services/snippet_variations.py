"""
Build the snippet variation payload sent to the execution backend.

For the selected sub-snippet types, every text block (sub-snippet base,
paragraphs, paragraph variations) becomes {"body", "params"} where params are
the {{ template.parameters }} the block uses.
"""
import re
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.snippet import Snippet, SubSnippet, Paragraph, VARIATION_TYPES
from app.services.errors import SnippetNotFoundError
from app.utils.locale import map_type_to_backend
from app.utils.logger import logger

_PARAM_RE = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")


def extract_template_parameters(content: str) -> List[str]:
    """Unique template parameter names in order of first appearance."""
    if not content:
        return []
    params: List[str] = []
    for match in _PARAM_RE.finditer(content):
        param = match.group(1).strip()
        if param not in params:
            params.append(param)
    return params


def normalize_variation_types(variation_types: List[str]) -> List[str]:
    """Upper-case, expand legacy DEFAULT to every type, drop unknown values."""
    normalized: List[str] = []
    for value in variation_types:
        upper = str(value).upper()
        candidates = VARIATION_TYPES if upper == "DEFAULT" else (upper,)
        for candidate in candidates:
            if candidate in VARIATION_TYPES and candidate not in normalized:
                normalized.append(candidate)
    return normalized


def _block(content: str) -> Dict[str, Any]:
    body = content.strip()
    return {"body": body, "params": extract_template_parameters(body)}


async def resolve_snippet_variations(
    db: AsyncSession,
    snippet_id: str,
    variation_types: List[str],
) -> List[Dict[str, Any]]:
    valid_types = normalize_variation_types(variation_types)
    if not valid_types:
        logger.warning(
            "variations.no_valid_types",
            extra={"snippet_id": snippet_id, "error": f"expected one of {', '.join(VARIATION_TYPES)}"},
        )
        return []

    result = await db.execute(
        select(Snippet)
        .where(Snippet.id == snippet_id)
        .options(
            selectinload(Snippet.sub_snippets)
            .selectinload(SubSnippet.paragraphs)
            .selectinload(Paragraph.variations)
        )
    )
    snippet = result.scalar_one_or_none()
    if snippet is None:
        raise SnippetNotFoundError(snippet_id)

    business_type = map_type_to_backend(snippet.component)
    snippet_variations = []

    for sub_snippet in snippet.sub_snippets:
        if sub_snippet.type not in valid_types:
            continue

        blocks = []
        if sub_snippet.base and sub_snippet.base.strip():
            blocks.append(_block(sub_snippet.base))

        for paragraph in sub_snippet.paragraphs:
            if paragraph.content and paragraph.content.strip():
                blocks.append(_block(paragraph.content))
            # The backend picks one variation at random per page
            for variation in paragraph.variations:
                if variation.content and variation.content.strip():
                    blocks.append(_block(variation.content))

        snippet_variations.append({
            "title": snippet.title,
            "variations": blocks,
            "type": business_type,
            "snippet_id": snippet_id,
            "variation_type": sub_snippet.type,
        })

    logger.info(
        "variations.resolved",
        extra={"snippet_id": snippet_id, "count": len(snippet_variations)},
    )
    return snippet_variations
