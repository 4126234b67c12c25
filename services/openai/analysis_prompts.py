"""Prompt builders for the four OCT sub-analyses."""

from typing import Optional


def build_system_prompt() -> str:
    """Return the system prompt shared by every sub-analysis."""
    return (
        "You are an expert retinal specialist reading optical coherence tomography (OCT) scans. "
        "You are careful and conservative, and you only describe what is visible in the image."
    )


def segmentation_prompt() -> str:
    return (
        "Generate a medical segmentation map. Use distinct colors: Blue=Fluid, Yellow=Drusen, "
        "Red=CNV, Green=Healthy. Embed a legend."
    )


def segmentation_uncertainty_prompt() -> str:
    return (
        "Generate a segmentation uncertainty map (cool-to-warm scale). Highlight fuzzy fluid "
        "edges and indistinct layers in warm colors."
    )


def heatmap_prompt(refinement: Optional[str] = None) -> str:
    """Return the attention heatmap instruction, focused on the refinement when given."""
    if refinement:
        return f'Generate a NEW heatmap focusing on: "{refinement}".'
    return "Generate an attention heatmap (warm colors) for pathology (fluid, lesions). Desaturate background."


def classification_prompt(correlation_id: Optional[str], refinement: Optional[str] = None) -> str:
    """Return the classification prompt.

    The correlation id is embedded with an instruction to echo it verbatim in
    `processedId` so the response can be matched to its request.
    """
    prompt = (
        "Analyze this retinal OCT image.\n\n"
        f'VERIFICATION ID: "{correlation_id or ""}"\n'
        "IMPORTANT: You MUST echo back this ID exactly in the 'processedId' field. "
        "This is critical for patient safety verification.\n\n"
        "Strictly differentiate:\n"
        "- Fluid (DME/CNV) vs Deposits (Drusen).\n"
        "- Wet AMD (CNV + Fluid) vs Dry AMD (Drusen/GA).\n"
        "- DME (Fluid without CNV membrane).\n\n"
        "Priority:\n"
        "1. FLUID? -> Wet (CNV or DME).\n"
        "2. NO FLUID? -> Dry (GA, AMD, Drusen, Normal).\n\n"
        "Check for Geographic Atrophy in dry scans.\n"
        "Check for Neovascular Membrane to distinguish CNV from DME.\n\n"
        "Anti-Hallucination Protocol:\n"
        "- Do NOT invent features.\n"
        "- Evidence must be visible.\n"
        "- Do NOT use generic definitions. Describe morphology specific to THIS image.\n\n"
        "Report the confidence as a percentage, e.g. 85%."
    )
    if refinement:
        prompt += f'\n\nRefinement Feedback: "{refinement}". Re-evaluate based on this.'
    return prompt
