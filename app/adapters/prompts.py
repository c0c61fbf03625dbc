"""Prompt text and localized section headings for note generation."""

import re
from typing import Dict, Optional

SECTION_TERMS: Dict[str, Dict[str, str]] = {
    "en": {
        "table_of_contents": "Table of Contents",
        "cue_column": "Exam Prep Questions",
        "detailed_notes": "Detailed Notes",
        "summary": "Comprehensive Summary",
    },
    "es": {
        "table_of_contents": "Tabla de Contenidos",
        "cue_column": "Preguntas de Examen",
        "detailed_notes": "Notas Detalladas",
        "summary": "Resumen",
    },
    "fr": {
        "table_of_contents": "Table des Matières",
        "cue_column": "Questions d'Examen",
        "detailed_notes": "Notes Détaillées",
        "summary": "Résumé Complet",
    },
    "de": {
        "table_of_contents": "Inhaltsverzeichnis",
        "cue_column": "Prüfungsfragen",
        "detailed_notes": "Detaillierte Notizen",
        "summary": "Umfassende Zusammenfassung",
    },
    "it": {
        "table_of_contents": "Indice dei Contenuti",
        "cue_column": "Domande d'Esame",
        "detailed_notes": "Note Dettagliate",
        "summary": "Riassunto Comprensivo",
    },
    "pt": {
        "table_of_contents": "Índice de Conteúdo",
        "cue_column": "Questões de Prova",
        "detailed_notes": "Notas Detalhadas",
        "summary": "Resumo Abrangente",
    },
}

# A handful of frequent function words per language; at least three hits
# and more than English are required before switching away from English.
_KEYWORDS = {
    "en": r"the|and|is|are|was|were|this|that|with|from|they|have|what|how|why",
    "es": r"el|los|las|que|del|una|por|con|para|es|como|pero|más|está",
    "fr": r"le|les|des|une|est|dans|pour|avec|qui|sur|pas|mais|sont|très",
    "de": r"der|die|das|und|ist|nicht|mit|ein|eine|auf|für|auch|sind|wird",
    "it": r"il|gli|della|che|sono|una|per|con|non|come|anche|più|questo",
    "pt": r"os|as|que|uma|não|com|para|são|está|também|como|mais|isso",
}

NEW_PAGE = "<!-- NEW_PAGE -->"


def detect_language(text: str) -> str:
    sample = (text or "").lower()[:1000]
    if not sample.strip():
        return "en"
    counts = {
        code: len(re.findall(rf"\b(?:{words})\b", sample))
        for code, words in _KEYWORDS.items()
    }
    english = counts.pop("en")
    best = max(counts, key=counts.get)
    if counts[best] >= 3 and counts[best] > english:
        return best
    return "en"


def section_terms(language: Optional[str], text: str = "") -> Dict[str, str]:
    code = (language or detect_language(text)).lower().split("-")[0]
    return SECTION_TERMS.get(code, SECTION_TERMS["en"])


NOTES_SYSTEM_PROMPT = (
    "You are an expert academic note-taker who creates high-quality Mindsy Notes. "
    "Your notes are well-structured, comprehensive, and help students study effectively. "
    "You create content that flows directly from cue column to detailed notes without "
    "intermediate sections."
)

CLEAN_DOCUMENT_SYSTEM_PROMPT = (
    "You are a professional document formatter specializing in cleaning and structuring "
    "text while preserving all original content. You excel at fixing spacing issues, "
    "removing artifacts, and creating beautiful readable documents."
)

VERBATIM_SYSTEM_PROMPT = """You are a document formatter. Your task is to take raw text and format it into clean Markdown with NO content changes whatsoever.

CRITICAL RULES:
- DO NOT change, rephrase, or summarize ANY content
- DO NOT add new information or explanations
- ONLY add basic Markdown formatting for structure
- Preserve exact wording, even if informal or contains errors

Apply ONLY these formatting improvements:
1. Add title as H1 (# Title) if provided
2. Identify natural sections and make them H2 (## Section)
3. Convert lists to proper bullet points or numbered lists
4. Format code snippets with backticks
5. Add emphasis (*italic*) or strong (**bold**) for existing emphasis
6. Preserve paragraph breaks and line spacing

Output clean Markdown that preserves the original content exactly."""

LIGHT_SYSTEM_PROMPT = """You are a document formatter. Your task is to take raw text and format it into well-structured Markdown with minimal content changes.

RULES:
- Keep 95%+ of original content unchanged
- Fix only obvious typos or formatting issues
- Add logical structure and formatting
- DO NOT summarize or remove information
- Keep the author's voice and style

Apply these formatting improvements:
1. Add title as H1 (# Title) if provided
2. Organize content into logical sections with H2/H3 headers
3. Convert lists to proper Markdown lists
4. Format code blocks, quotes, and emphasis properly
5. Fix obvious typos and formatting inconsistencies
6. Add paragraph breaks for readability
7. Preserve important details and context

Output well-formatted Markdown that enhances readability while preserving content."""


def study_notes_prompt(
    title: str,
    transcript: Optional[str],
    document_text: Optional[str],
    terms: Dict[str, str],
    subject: Optional[str] = None,
) -> str:
    sources = []
    if transcript:
        sources.append(f"**Transcript:**\n{transcript}\n")
    if document_text:
        sources.append(f"**Document Text:**\n{document_text}")
    subject_line = f"**Course Subject:** {subject}\n" if subject else ""

    return f"""You are a world-class academic assistant and instructional designer. Your mission is to create a comprehensive, standalone study guide from the provided lecture content. The output must be perfectly structured in Markdown.
The entire document you generate, including all headings, the table of contents, cues, notes, and the summary, MUST be in the same language as the content you are given.

Relevance filtering:
- Focus only on educational content related to the core topic. Include explanations, examples, scientific references, and practical applications.
- Exclude personal anecdotes, off-topic remarks, or self-promotion that add no educational value.

---

**Step-by-Step Instructions:**

1.  **Create a {terms["table_of_contents"]}:** a bulleted list of the main topics and sub-topics covered, in chronological order.

2.  **Generate the Mindsy Notes:**
    *   **{terms["cue_column"]}:** exam-style questions that test understanding of key concepts. Bold important terms. Keep each question concise.
    *   **{terms["detailed_notes"]}:** for each cue item, detailed notes that flow directly from it. Synthesize the transcript and the document. Explain every concept as if teaching someone who missed the lecture.

3.  **Generate the {terms["summary"]}:** after the detailed notes insert the page break marker "{NEW_PAGE}", then write a standalone expository summary in full paragraphs that defines key terms and connects the main ideas.

---

**Input Content:**
**Lecture Title:** {title}
{subject_line}
{chr(10).join(sources)}

---

**REQUIRED OUTPUT FORMAT:**

## {terms["table_of_contents"]}
*   Topic 1
*   Topic 2
    *   Sub-topic 2.1

---

## Mindsy Notes

### {terms["cue_column"]}
*   Question about a **key term**?

{NEW_PAGE}

### {terms["detailed_notes"]}
#### Heading for each cue item
*   Explanatory notes

{NEW_PAGE}

## {terms["summary"]}
"""


def clean_document_prompt(title: str, document_text: str, language: str) -> str:
    return f"""You are a professional document formatter specializing in creating clean, readable documents. Your task is to take raw extracted text and format it into a well-structured Markdown document while preserving ALL original content.

**CRITICAL RULES:**
- PRESERVE ALL CONTENT: Do not remove, summarize, or change any information
- KEEP EXACT WORDING: Maintain the author's original phrasing and terminology
- ONLY IMPROVE FORMATTING: Add structure, fix spacing, and organize content
- USE PROPER MARKDOWN: Apply correct heading hierarchy, lists, and formatting
- MAINTAIN LANGUAGE: Use the same language as the source content ({language})

**FORMATTING IMPROVEMENTS TO APPLY:**
1. **Title Structure**: Use the provided title "{title}" as the main H1 heading
2. **Text Artifact Removal**: Replace plus signs used as spaces with proper spaces (e.g., "Introduction+to+OM" -> "Introduction to OM")
3. **Spacing Cleanup**: Fix spacing issues, remove excessive line breaks, and add proper word separation
4. **Section Headers**: Identify natural content sections and create appropriate H2/H3 headings
5. **List Formatting**: Convert informal lists to proper Markdown bullet points or numbered lists
6. **Emphasis**: Use **bold** for important terms and *italic* for emphasis where appropriate
7. **Paragraph Structure**: Organize content into logical paragraphs with proper spacing

**CONTENT TO PROCESS:**
{document_text}

Format the content now, keeping every piece of information while making it readable:"""


def formatting_user_prompt(content: str, title: Optional[str]) -> str:
    if title:
        return f'Please format this content with the title "{title}":\n\n{content}'
    return f"Please format this content:\n\n{content}"
