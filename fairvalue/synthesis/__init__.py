"""Synthesis: classification, blending, explanation and resynthesis."""

from fairvalue.synthesis.blender import blend
from fairvalue.synthesis.classifier import classify
from fairvalue.synthesis.guardrails import Proposal
from fairvalue.synthesis.guardrails import validate_proposal
from fairvalue.synthesis.recommendation import generate_recommendation
from fairvalue.synthesis.resynthesize import resynthesize
from fairvalue.synthesis.risks import identify_risks
from fairvalue.synthesis.synthesizer import synthesize

__all__ = [
    'Proposal',
    'blend',
    'classify',
    'generate_recommendation',
    'identify_risks',
    'resynthesize',
    'synthesize',
    'validate_proposal',
]
