from dataclasses import replace
from datetime import date
from datetime import timedelta
import math

import pytest

from fairvalue.domain.types import AccuracyCheck
from fairvalue.domain.types import Action
from fairvalue.domain.types import AnalysisRecord
from fairvalue.domain.types import decode_weights
from fairvalue.domain.types import DeterministicBaseline
from fairvalue.domain.types import encode_weights
from fairvalue.domain.types import MODEL_KEYS
from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelResult
from fairvalue.domain.types import Signal
from fairvalue.domain.types import Source


class TestModelResult:
  """Tests for ModelResult dataclass."""

  @pytest.mark.parametrize('fair_value, usable', [
      (100.0, True),
      (0.0, False),
      (-5.0, False),
      (math.nan, False),
      (math.inf, False),
      (None, False),
  ])
  def test_usable(self, fair_value, usable):
    """Only finite positive values may carry weight."""
    result = ModelResult(ModelKey.DCF, True, fair_value, Signal.FAIR)
    assert result.usable is usable

  def test_unavailable(self):
    """Unavailable results carry their reason and no value."""
    result = ModelResult.unavailable(ModelKey.PBR, '缺少歷史 PBR 數據')
    assert not result.available
    assert not result.usable
    assert result.signal == Signal.NA
    assert result.reason == '缺少歷史 PBR 數據'


class TestWeights:
  """Tests for weight encoding."""

  def test_roundtrip_ignores_unknown(self):
    """String keys map back to model keys; unknown keys are dropped."""
    encoded = encode_weights({ModelKey.DCF: 0.6, ModelKey.PER: 0.4})
    assert encoded == {'dcf': 0.6, 'per': 0.4}
    encoded['magic'] = 1.0
    assert decode_weights(encoded) == {ModelKey.DCF: 0.6, ModelKey.PER: 0.4}


class TestAnalysisRecord:
  """Tests for AnalysisRecord serialization."""

  def test_dict_roundtrip(self, make_record):
    """to_dict and from_dict are inverse, baseline included."""
    record = make_record()
    enhanced = replace(record,
                       source=Source.EXTERNAL,
                       deterministic=DeterministicBaseline(
                           record.classification, record.valuation,
                           record.recommendation),
                       id=3)
    assert AnalysisRecord.from_dict(enhanced.to_dict()) == enhanced

  def test_plain_keys(self, make_record):
    """Serialized maps use plain string keys."""
    data = make_record().to_dict()
    assert set(data['valuation']['weights']) <= {k.value for k in MODEL_KEYS}
    assert set(data['model_summaries']) == {k.value for k in MODEL_KEYS}
    assert data['classification']['type'] == '成長股'

  def test_analysis_date(self, make_record, now):
    """The analysis date is the creation date."""
    assert make_record().analysis_date == now.date()


class TestAccuracyCheck:
  """Tests for AccuracyCheck dataclass."""

  def _check(self, **kwargs):
    return AccuracyCheck(analysis_id=1,
                         ticker='2330',
                         analysis_date=date(2025, 1, 1),
                         predicted_fair_value=110.0,
                         predicted_action=Action.BUY,
                         price_at_analysis=100.0,
                         **kwargs)

  def test_defaults(self):
    """Every horizon starts unknown."""
    check = self._check()
    assert check.actual_prices == {30: None, 90: None, 180: None}
    assert check.direction_correct == {30: None, 90: None, 180: None}
    assert not check.is_complete

  @pytest.mark.parametrize('days, expected', [
      (29, []),
      (30, [30]),
      (90, [30, 90]),
      (200, [30, 90, 180]),
  ])
  def test_missing_horizons(self, days, expected):
    """Elapsed horizons are due once the day count is reached."""
    check = self._check()
    as_of = date(2025, 1, 1) + timedelta(days=days)
    assert check.missing_horizons(as_of) == expected

  def test_filled_horizons_not_missing(self):
    """Known prices are never due again."""
    check = self._check(actual_prices={30: 101.0, 90: 99.0, 180: 98.0})
    assert check.missing_horizons(date(2026, 1, 1)) == []
    assert check.is_complete
