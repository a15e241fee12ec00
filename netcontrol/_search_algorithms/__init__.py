"""
This is an internal module which contains the implementations of the search
strategies used by an `Analysis`. The strategies only use the public API of
the `CandidateEvaluator` and never touch the analysis record itself; iteration
counters, status and persistence are handled by the `AnalysisRunner`.
"""
