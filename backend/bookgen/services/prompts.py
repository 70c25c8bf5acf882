"""Prompt templates for each generation step.

Templates use ``string.Template`` placeholders (``$title``) and are rendered
against a fixed map of named variables. An active stored Instruction with the
same name overrides the built-in default. Stored text is only ever
interpolated, never evaluated.
"""

import logging
from dataclasses import dataclass
from string import Template

from bookgen.services.taxonomy import TaxonomyRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromptTemplate:
    system: str
    user: str


_CONTENT_RULES = """\
- All characters must be 21+.
- No profanity, sexual slang, extreme kinks or graphic violence.
- No references to deities, sacred texts, places of worship, rituals, caste, politics or nationalism.
- No stereotypes, cultural caricatures or discriminatory language.
- No meta commentary, filler text or author notes.
- Return output exactly in the requested format."""

DEFAULT_TEMPLATES: dict[str, PromptTemplate] = {
    "title": PromptTemplate(
        system=(
            "You are a professional publishing assistant naming contemporary romance and "
            "women's fiction. Titles must be original, under 5 words, and avoid overused "
            "words such as forever, destiny, heart, soul and legend.\n" + _CONTENT_RULES
        ),
        user="""\
INPUT
STORY_DESCRIPTION: $story_description
GENRE_LAYER: $genre

TASK
Generate 9 book titles divided into 3 categories:
1) poetic_metaphorical: lyrical, image-driven (4 words or fewer)
2) conversational_modern: casual, quotable (4 words or fewer)
3) ironic_bittersweet: paradoxical or layered (4 words or fewer)

OUTPUT FORMAT
Return ONLY a JSON object:
{"poetic_metaphorical": ["t1", "t2", "t3"], "conversational_modern": ["t4", "t5", "t6"], "ironic_bittersweet": ["t7", "t8", "t9"]}""",
    ),
    "description": PromptTemplate(
        system=(
            "You are a publishing editor who writes back-cover blurbs for international "
            "markets.\n" + _CONTENT_RULES
        ),
        user="""\
INPUT
title: $title
genre: $genre
variant: $variant
trope_description: $plot_description
chapter_summaries: $chapter_summaries

TASK
Write ONE description of about 100 words in the style of the variant.
Do not reveal chapter structure or spoil the ending.
Output only the description, nothing else.""",
    ),
    "chapters": PromptTemplate(
        system=(
            "You are a professional romance author writing immersive, emotionally intense "
            "short stories in three chapters.\n" + _CONTENT_RULES
        ),
        user="""\
INPUT
title: $title
trope_name: $plot_title
trope_description: $plot_description
chapter_beats:
$chapter_beats
narrative: $narrative
spice_level: $spice_level
ending_type: $ending

TASK
Write all 3 chapters in sequence, 1000 to 1500 words each, keeping names, setting and
timeline consistent. End the last chapter with a line that fits the ending_type.

OUTPUT FORMAT
Return ONLY valid JSON, no markdown fences:
{"chapters": [{"title": "string", "prose": "string"}, {"title": "string", "prose": "string"}, {"title": "string", "prose": "string"}]}""",
    ),
    "cover_scene": PromptTemplate(
        system="",
        user="""\
Write a concise scene description (1 to 3 sentences) for a book cover.
Base it on this blurb: $description
and this story: $plot_description Key moments: $chapter_summaries
Convey the ending ($ending) and the intimacy level ($spice_level) through atmosphere,
mood, body language and proximity cues.
Do not reference art style, colors or typography.
Output only the scene description.""",
    ),
    "cover_image": PromptTemplate(
        system="",
        user=(
            'Design a book cover with the title "$title" at the top and the author '
            '"$author_name" at the bottom. Depict $scene. Apply $design_style (this includes '
            "both artwork style and typography direction). Apply $genre."
        ),
    ),
    "tags": PromptTemplate(
        system=(
            "You are a metadata editor tagging romance novels for discovery.\n" + _CONTENT_RULES
        ),
        user="""\
INPUT
STORY_DESCRIPTION: $story_description
GENRE_LAYER: $genre
SPICE_LEVEL: $spice_level
ENDING: $ending

TASK
Return 5 to 10 short lowercase discovery tags (tropes, mood, setting).

OUTPUT FORMAT
Return ONLY a JSON object: {"tags": ["tag1", "tag2"]}""",
    ),
}


def render(template: str, variables: dict[str, str]) -> str:
    """Interpolate *variables* into *template*; unknown placeholders are left as-is."""
    tmpl = Template(template)
    unknown = set(tmpl.get_identifiers()) - set(variables)
    if unknown:
        logger.warning("prompt template references unknown variables: %s", sorted(unknown))
    return tmpl.safe_substitute(variables)


def load_template(name: str, taxonomy: TaxonomyRepository | None = None) -> PromptTemplate:
    """Return the active stored template for *name*, else the built-in default."""
    if taxonomy is not None:
        instruction = taxonomy.active_instruction(name)
        if instruction is not None:
            return PromptTemplate(system=instruction.system_template, user=instruction.user_template)
    return DEFAULT_TEMPLATES[name]


def build_prompt(
    name: str,
    variables: dict[str, str],
    taxonomy: TaxonomyRepository | None = None,
) -> tuple[str, str]:
    """Return the rendered (system_prompt, user_prompt) pair for prompt *name*."""
    template = load_template(name, taxonomy)
    return render(template.system, variables), render(template.user, variables)


def story_description(plot_title: str, plot_description: str, beats: list[tuple[str, str]]) -> str:
    """Plot summary with one "- name: description" line per outline chapter."""
    text = f"Trope Title: {plot_title}\nTrope Description: {plot_description}"
    if beats:
        text += "\nChapters:\n" + "\n".join(f"- {name}: {desc}" for name, desc in beats)
    return text
