"""
certeval — Conversational Certificate Evaluation

Upload a certificate, describe the criteria it must meet, and get a
weighted, threshold-based verdict that can be re-run and compared as the
criteria evolve.

Main components:
- providers: Language-model backends (Ollama, Google)
- collaborators: Language model, retrieval and text extraction adapters
- storage: Sessions, versioned criteria and evaluations on a pluggable backend
- criteria: Criteria schema, deep merge, interpretation and generation
- scoring: Deterministic weighted scoring engine
- evaluation: Validation executor and evaluation runner
- conversation: Status machine, intent routing and the orchestrator
"""

__version__ = "0.1.0"
