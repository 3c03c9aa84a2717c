"""
Test suite for the β-blockade reproducibility analyses.

This package contains unit tests and integration tests for:
- Metabolic equations and data preparation
- Long/wide reshaping
- Reliability (ICC, Fisher z) and variability (CV, RM-ANOVA)
- Paired comparisons and mixed models
- The analysis pipeline and table export
"""
