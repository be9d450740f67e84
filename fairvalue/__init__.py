'''
Synthesis and adaptive-feedback valuation engine.

Several independent valuation models value one security. This package
classifies the security into an investing archetype, blends the model
fair values with archetype weights, explains the result, and later grades
past analyses against realized prices to adapt the weights.

Usage:
  from fairvalue.config import EngineConfig
  from fairvalue.service import ValuationService

  service = ValuationService(EngineConfig.from_env())
  record = service.analyze('2330')
  print(record.recommendation.action, record.valuation.fair_value)
'''
