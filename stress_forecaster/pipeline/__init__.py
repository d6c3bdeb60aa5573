"""
Prediction pipeline.

orchestrator : ``PredictionOrchestrator`` — per-request entry point
retrigger    : ``RepredictionTrigger`` — rate-limited background re-prediction
scheduled    : ``ScheduledPredictionStage`` — audited sweep over all users
base         : ``PipelineStage`` ABC shared by audited stages
"""
