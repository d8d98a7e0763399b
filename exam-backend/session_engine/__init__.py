"""
Exam Session Engine
exam-backend/session_engine/

Components:
1. SessionLifecycleManager: start / resume / pause / lazy expiry, question-order strategies
2. AnswerProcessor        : answers, flags and navigation against a live session
3. Scorer                 : one-shot finalization into an immutable result
4. PerformanceAggregator  : weak areas, study plans, trends and analytics
"""
