"""Prompt builder for document generation.

Renders a TemplateStructure, optional reference data and the user
instruction into a single prompt in one of two dialects:

- docx: tagged sections ``[SECTION-n]...[/SECTION-n]`` and ``[TABLE]...[/TABLE]``
- xlsx: tab-separated data rows without a header line
"""

import logging

from docsynth.core.errors import EmptyInstruction
from docsynth.strategies.template_engine.hints import HintRuleTable
from docsynth.strategies.template_engine.models import (
    OutputKind,
    ParagraphElement,
    StyleHint,
    TableElement,
    TemplateStructure,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Prompt fragments
# =============================================================================

DOCX_INTRO = """You are an AI that writes document content based on a template.

TEMPLATE STRUCTURE:
{structure}"""

DOCX_RULES = """TASK:
Using the template structure above, write new content that follows the user instruction.
Keep the same sections, order and format as the template.

RULES:
1. Write one [SECTION-n] block for every HEADING or PARAGRAPH section you fill, using the same number n.
2. Keep headings short; keep labels such as "Nama:" and fill in the value after them.
3. For every TABLE section write one [TABLE] block, in the same order as the template tables.
4. Table rows are tab-separated; the first row repeats the column headers.
5. Use the literal characters \\n inside a section for a new paragraph.
6. Do NOT use markdown.
7. Do NOT add explanations or commentary.
8. Output the blocks only."""

DOCX_FORMAT = """OUTPUT FORMAT:
[SECTION-n]
new content here
[/SECTION-n]

[TABLE]
column1\tcolumn2\tcolumn3
value1\tvalue2\tvalue3
[/TABLE]"""

DOCX_EXAMPLE = """EXAMPLE OUTPUT:
[SECTION-1]
New Document Title
[/SECTION-1]

[SECTION-2]
This is the first paragraph written for the new document.
[/SECTION-2]

[TABLE]
Name\tScore\tNote
Budi\t85\tPassed
Ani\t92\tPassed
[/TABLE]"""

XLSX_INTRO = """You are an AI that produces table data for a spreadsheet template.

COLUMNS AVAILABLE IN THE TEMPLATE: {headers}

TASK: Produce data rows that fill the table according to the user instruction."""

XLSX_FORMAT = """OUTPUT FORMAT:
- Output MUST be TSV (tab-separated values)
- Do NOT include the header line (the template already has it)
- Do NOT use markdown, do NOT add explanations
- Data only, one line per record, columns in the order listed above"""

XLSX_EXAMPLE = """EXAMPLE OUTPUT (for columns: Name, Score, Note):
Budi Santoso\t85\tPassed
Ani Wijaya\t92\tPassed with distinction
Candra\t78\tPassed"""

REFERENCE_BLOCK = """=== REFERENCE DATA (BEGIN) ===
Use the following data from the attached source document as factual input.
{source_text}
=== REFERENCE DATA (END) ==="""

INSTRUCTION_BLOCK = """=== USER INSTRUCTION (BEGIN) ===
{instruction}
=== USER INSTRUCTION (END) ===
The user instruction above is binding: the generated content MUST follow it."""


class PromptBuilder:
    """Builds generation prompts from template structures.

    Stateless apart from the hint table it is constructed with; ``build``
    always returns the same text for the same arguments.
    """

    def __init__(self, hint_rules: HintRuleTable | None = None) -> None:
        self._hint_rules = hint_rules or HintRuleTable()

    def build(
        self,
        structure: TemplateStructure,
        instruction: str,
        source_text: str | None = None,
    ) -> str:
        """Render the prompt for ``structure.kind``.

        Args:
            structure: The template structure.
            instruction: The user's natural-language instruction.
            source_text: Optional extracted text of a secondary source document.

        Returns:
            The full prompt text.

        Raises:
            EmptyInstruction: If the instruction is blank.
        """
        if not instruction or not instruction.strip():
            raise EmptyInstruction("Instruction must not be empty.")

        match structure.kind:
            case OutputKind.DOCX:
                parts = self._docx_parts(structure)
            case OutputKind.XLSX:
                parts = self._xlsx_parts(structure)
            case _:
                raise ValueError(f"Unsupported output kind: {structure.kind}")

        if source_text and source_text.strip():
            parts.append(REFERENCE_BLOCK.format(source_text=source_text.strip()))

        parts.append(INSTRUCTION_BLOCK.format(instruction=instruction.strip()))
        return "\n\n".join(parts)

    def describe_structure(self, structure: TemplateStructure) -> str:
        """Return one line per structural element in the docx dialect."""
        lines = []
        for element in structure.elements:
            match element:
                case ParagraphElement():
                    label = "HEADING" if element.style == StyleHint.HEADING else "PARAGRAPH"
                    hint = self._hint_rules.hint_for(element.text)
                    hint_part = f" {hint}" if hint else ""
                    lines.append(f'SECTION-{element.index} [{label}]{hint_part}: "{element.text}"')
                case TableElement():
                    lines.append(
                        f"SECTION-{element.index} [TABLE]: columns = {', '.join(element.headers)}"
                    )
                    if element.sample_rows:
                        lines.append(f"  example row: {' | '.join(element.sample_rows[0])}")
        return "\n".join(lines)

    def _docx_parts(self, structure: TemplateStructure) -> list[str]:
        return [
            DOCX_INTRO.format(structure=self.describe_structure(structure)),
            DOCX_RULES,
            DOCX_FORMAT,
            DOCX_EXAMPLE,
        ]

    def _xlsx_parts(self, structure: TemplateStructure) -> list[str]:
        return [
            XLSX_INTRO.format(headers=", ".join(structure.sheet_headers)),
            XLSX_FORMAT,
            XLSX_EXAMPLE,
        ]
