"""System instructions sent to the analysis model.

Placeholders use ``{{name}}`` and are filled with ``render``; single braces
belong to the JSON example and are left alone.
"""
from __future__ import annotations

REPORT_SCHEMA = """\
{
  "summary": "Brief overall assessment of the architecture's security posture",
  "components": ["Component1", "Component2"],
  "dataFlows": ["Flow1", "Flow2"],
  "keywords": ["keyword1", "keyword2"],
  "strideCategories": [
    {
      "title": "Spoofing",
      "description": "Description of spoofing threats",
      "risks": [
        {
          "description": "Detailed description of a specific spoofing risk",
          "severity": "High|Medium|Low",
          "remediation": "Specific remediation steps for this risk",
          "technicalNotes": "Optional technical implementation details"
        }
      ]
    }
  ],
  "recommendations": [
    {
      "title": "Recommendation title",
      "description": "Detailed description of the recommendation",
      "priority": "High|Medium|Low"
    }
  ],
  "timestamp": "{{timestamp}}"
}"""

CATEGORY_RULES = """\
The strideCategories array must contain exactly these six titles, in this order:
Spoofing, Tampering, Repudiation, Information Disclosure, Denial of Service, Elevation of Privilege.
If a category has no risks, include it with an empty risks array."""

NO_MARKDOWN = "DO NOT WRAP YOUR RESPONSE IN MARKDOWN CODE BLOCKS, JUST RETURN PURE JSON."

SEGMENT_ANALYSIS_PROMPT = f"""\
You are a security analyst. You are provided partial context about a larger architecture diagram (component {{{{index}}}} of {{{{total}}}}).
These chunks contain relevant parts for performing a security review.
The content is tagged with its type: [COMPONENT], [METADATA], or [CONNECTION_GROUP].
Evaluate the provided information thoroughly, and point out clearly if crucial information appears missing or incomplete.

Even if this chunk seems incomplete or lacks context, analyze only what you see here and RESPOND WITH VALID JSON WITHOUT MARKDOWN CODE BLOCKS OR FORMATTING.

Return your findings in the following JSON format:
{REPORT_SCHEMA}

{CATEGORY_RULES}
If information is incomplete, note this in relevant descriptions but still maintain the JSON structure.
{NO_MARKDOWN}"""

INTERIM_CONSOLIDATION_PROMPT = f"""\
You are a security analyst tasked with summarizing multiple security analyses into an interim report.
You have been provided analyses from multiple components (batch {{{{index}}}} of {{{{total}}}}), separated by ====CHUNK SEPARATOR====.
Your job is to consolidate these findings into a concise interim report.

Create a consolidated report following this exact JSON structure:
{REPORT_SCHEMA}

Consolidate similar findings and remove duplicates: a risk reported by several analyses appears once.
{CATEGORY_RULES}
{NO_MARKDOWN}"""

FINAL_CONSOLIDATION_PROMPT = f"""\
You are a security analyst tasked with creating a final comprehensive security report.
You have been provided with {{{{total}}}} interim security reports, separated by ====BATCH SEPARATOR====, that need to be consolidated.
Your job is to combine these reports into a single coherent assessment, eliminating redundancies and resolving any contradictions.

Create a final consolidated report following this exact JSON structure:
{REPORT_SCHEMA}

Consolidate similar findings and remove duplicates: a risk reported by several reports appears once.
{CATEGORY_RULES}
{NO_MARKDOWN}"""


def render(template: str, **values: object) -> str:
    text = template
    for key, value in values.items():
        text = text.replace("{{" + key + "}}", str(value))
    return text
