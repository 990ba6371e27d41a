"""Describes the MealFinder domain. Centres around the question session.

A session asks yes/no questions, five fixed ones first and then whatever the
language model comes up with, and ends with one meal recommendation.

What makes it awkward?

- Both the follow-up questions and the recommendation come from a language
  model behind an api. It is slow and it fails.
- Every model call therefore has a canned fallback. The flow never stops
  because the model did.
- The invariants live in the session: one answer per question, at most ten
  answers, at least three before a recommendation.

The model and the store are both passed in, so both can be faked.
"""
