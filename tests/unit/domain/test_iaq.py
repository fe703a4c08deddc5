"""
Tests for the IAQ index and per-channel comfort status.
"""
import pytest

from iaq_monitor.domain.iaq import calculate_iaq, channel_score, channel_status, iaq_level
from iaq_monitor.domain.models import Channel


class TestChannelStatus:

    @pytest.mark.parametrize("value,expected", [(25.0, "good"), (30.0, "warning"), (40.0, "danger")])
    def test_temperature(self, value, expected):
        assert channel_status(Channel.TEMPERATURE, value) == expected

    def test_pressure_negative_is_danger(self):
        assert channel_status(Channel.DIFFERENTIAL_PRESSURE, -2.0) == "danger"


class TestScore:

    def test_inside_good_band(self):
        assert channel_score(Channel.CO2, 700.0) == 100.0

    def test_linear_falloff(self):
        # 17.5 above the good band, worst case distance is 35
        assert channel_score(Channel.PM25, 32.5) == pytest.approx(50.0)

    def test_never_negative(self):
        assert channel_score(Channel.CO2, 100_000.0) == 0.0


class TestIndex:

    def test_all_good_is_excellent(self):
        result = calculate_iaq({
            Channel.PM25: 6.0,
            Channel.CO2: 700.0,
            Channel.TEMPERATURE: 25.0,
            Channel.HUMIDITY: 50.0,
            Channel.TVOC: 0.2,
            Channel.DIFFERENTIAL_PRESSURE: 1.5,
        })
        assert result.index == 100
        assert result.level == "Excellent"
        assert Channel.DIFFERENTIAL_PRESSURE not in result.components

    def test_partial_values_weighted(self):
        result = calculate_iaq({Channel.PM25: 32.5})
        assert result.index == 50
        assert result.level == "Moderate"

    def test_no_scored_channels(self):
        assert calculate_iaq({Channel.DIFFERENTIAL_PRESSURE: 1.5}) is None

    @pytest.mark.parametrize("index,label", [(100, "Excellent"), (79, "Good"), (40, "Moderate"), (20, "Poor"), (3, "Critical")])
    def test_levels(self, index, label):
        assert iaq_level(index) == label
