"""
Business logic layer.

Services flush but never commit; the calling blueprint owns the transaction.

    goal_service       goal / action plan / weekly report creation and field cleaning
    permission         role and ownership checks
    review_lifecycle   review-and-lock state machine and deadline requests
    health             on_track / at_risk / high_risk evaluation
    rubric             weighted rubric scoring and verification decisions
    insights           pure analytics aggregation
    insight_loader     database loading for insights and progress snapshots
"""
