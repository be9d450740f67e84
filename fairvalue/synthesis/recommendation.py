'''
Recommendation generator.

Maps the upside of the blended fair value over the current price to an
action and a confidence, then assembles the explanation: headline
sentence, classification sentence, then at most one sentence per model in
the fixed model order.
'''

from collections.abc import Mapping
from typing import Callable, Optional

from fairvalue.domain.types import Action
from fairvalue.domain.types import Classification
from fairvalue.domain.types import Confidence
from fairvalue.domain.types import MODEL_KEYS
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelResult
from fairvalue.domain.types import Recommendation

CHEAP = '便宜'
EXPENSIVE = '昂貴'


def upside_pct(fair_value: float, price: float) -> float:
  '''(fair_value - price) / price * 100; 0 for a non-positive price.'''
  if price <= 0:
    return 0.0
  return (fair_value - price) / price * 100


def action_for(upside: float) -> tuple[Action, Confidence]:
  '''
  Threshold table:
    > 30%  -> BUY, strong
    > 10%  -> BUY, normal
    > -10% -> HOLD, neutral
    else   -> SELL, strong below -25%, normal otherwise
  '''
  if upside > 30:
    return Action.BUY, Confidence.HIGH
  if upside > 10:
    return Action.BUY, Confidence.MEDIUM
  if upside > -10:
    return Action.HOLD, Confidence.LOW
  if upside < -25:
    return Action.SELL, Confidence.HIGH
  return Action.SELL, Confidence.MEDIUM


def headline(fair_value: float, upside: float, prefix: str = '加權') -> str:
  action, confidence = action_for(upside)
  if action == Action.BUY and confidence == Confidence.HIGH:
    return f'{prefix}合理價 {fair_value} 元，潛在上漲空間 {round(upside, 2)}%'
  if action == Action.BUY:
    return f'{prefix}合理價 {fair_value} 元，尚有 {round(upside, 2)}% 空間'
  if action == Action.HOLD:
    return f'目前股價接近{prefix}合理價位（偏差 {round(upside, 2)}%）'
  return f'目前股價高於{prefix}合理價 {round(abs(upside), 2)}%'


def _band_reason(label: str) -> Callable[[ModelResult], Optional[str]]:

  def reason(result: ModelResult) -> Optional[str]:
    position = result.diag.get('position')
    if position == CHEAP:
      return f'{label}位於歷史低檔區，價格偏低'
    if position == EXPENSIVE:
      return f'{label}位於歷史高檔區，價格偏高'
    return None

  return reason


def _dividend_reason(result: ModelResult) -> Optional[str]:
  parts = []
  position = result.diag.get('position')
  if position == CHEAP:
    parts.append('殖利率位於歷史高位區，價格偏低')
  elif position == EXPENSIVE:
    parts.append('殖利率位於歷史低位區，價格偏高')
  if result.diag.get('is_aristocrat'):
    parts.append('符合股利貴族標準（連續配息且穩定成長）')
  return '；'.join(parts) or None


def _capex_reason(result: ModelResult) -> Optional[str]:
  recent = result.diag.get('recent_capex_growth')
  cagr = result.diag.get('capex_cagr')
  if not isinstance(recent, (int, float)) or not isinstance(cagr,
                                                           (int, float)):
    return None
  if recent > 0 and recent > cagr:
    return f'資本支出加速擴張（近年成長 {round(recent, 2)}%），未來營收動能可期'
  if recent < 0:
    return f'資本支出放緩（近年 {round(recent, 2)}%），成長動能趨緩'
  return None


MODEL_REASONS: dict[ModelKey, Callable[[ModelResult], Optional[str]]] = {
    ModelKey.PER: _band_reason('本益比'),
    ModelKey.PBR: _band_reason('股價淨值比'),
    ModelKey.DIVIDEND: _dividend_reason,
    ModelKey.CAPEX: _capex_reason,
    ModelKey.EV_EBITDA: _band_reason('EV/EBITDA'),
    ModelKey.PSR: _band_reason('股價營收比'),
}


def generate_recommendation(
    fair_value: float,
    price: float,
    classification: Classification,
    results: Mapping[ModelKey, ModelResult],
) -> Recommendation:
  '''
  Build the recommendation for a blended fair value.

  Args:
    fair_value: Blended fair value
    price: Current price
    classification: Classification used for the blend
    results: Model results by key

  Returns:
    Recommendation with ordered reasons
  '''
  upside = upside_pct(fair_value, price)
  action, confidence = action_for(upside)

  reasons = [
      headline(fair_value, upside),
      f'股票類型：{classification.archetype.value}，'
      f'{classification.description}',
  ]
  for key in MODEL_KEYS:
    builder = MODEL_REASONS.get(key)
    result = results.get(key)
    if builder is None or result is None or not result.available:
      continue
    sentence = builder(result)
    if sentence:
      reasons.append(sentence)

  return Recommendation(
      action=action,
      confidence=confidence,
      upside_pct=round(upside, 2),
      fair_value=fair_value,
      reasons=reasons,
  )
