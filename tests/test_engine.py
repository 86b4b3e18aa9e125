"""
Tests for dloopgov/governance/engine.py and dloopgov/governance/policies.py

Tests validation, risk analysis and the conservative and aggressive
policies.
"""

from decimal import Decimal

import pytest

from dloopgov.governance.engine import DecisionEngine
from dloopgov.governance.models import (
    Proposal,
    ProposalKind,
    ProposalState,
    VoteChoice,
)
from dloopgov.governance.policies import (
    AggressivePolicy,
    ConservativePolicy,
    PolicyVerdict,
    RiskPolicy,
    available_policies,
    get_policy,
    register_policy,
)
from dloopgov.market import AssetSignal, MarketAction, MarketContext


# ============================================================================
# TEST DATA
# ============================================================================

NOW = 1_700_000_000
USDC = "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238"
WBTC = "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599"
UNKNOWN = "0x9999999999999999999999999999999999999999"
PROPOSER = "0x1111111111111111111111111111111111111111"


def create_proposal(**overrides) -> Proposal:
    """Create an active USDC investment proposal."""
    fields = dict(
        id="1",
        proposer=PROPOSER,
        kind=ProposalKind.INVEST,
        target_asset=USDC,
        amount="2500",
        description="Invest 2500 USDC into treasury reserves",
        votes_for="0",
        votes_against="0",
        start_time=NOW - 3600,
        end_time=NOW + 3600,
        state=ProposalState.ACTIVE,
    )
    fields.update(overrides)
    return Proposal(**fields)


def create_market(risk: float = 0.2, rebalance: bool = False, **signals) -> MarketContext:
    """Create a market context; keyword args map symbol to (action, confidence)."""
    return MarketContext(
        recommendations={
            symbol: AssetSignal(MarketAction(action), confidence)
            for symbol, (action, confidence) in signals.items()
        },
        risk_score=risk,
        portfolio_rebalance=rebalance,
        timestamp=NOW,
    )


@register_policy
class ExplodingPolicy(RiskPolicy):
    name = "exploding"

    def decide(self, ctx):
        raise RuntimeError("model offline")


# ============================================================================
# POLICY REGISTRY TESTS
# ============================================================================

class TestPolicyRegistry:
    """Tests for policy lookup."""

    def test_builtin_policies(self):
        assert {"conservative", "aggressive"} <= set(available_policies())

    def test_lookup_case_insensitive(self):
        assert isinstance(get_policy(" Conservative "), ConservativePolicy)
        assert isinstance(get_policy("AGGRESSIVE"), AggressivePolicy)

    def test_unknown_policy(self):
        with pytest.raises(KeyError):
            get_policy("reckless")

    def test_unnamed_policy_rejected(self):
        class Nameless(RiskPolicy):
            def decide(self, ctx):
                return PolicyVerdict(True, 0.5, "")

        with pytest.raises(ValueError):
            register_policy(Nameless)

    def test_engine_accepts_instance(self):
        engine = DecisionEngine(AggressivePolicy())
        assert engine.policy.name == "aggressive"


# ============================================================================
# VALIDATION TESTS
# ============================================================================

class TestValidation:
    """Tests for DecisionEngine.validate through evaluate."""

    def setup_method(self):
        self.engine = DecisionEngine("conservative", clock=lambda: NOW)

    def test_valid(self):
        assert self.engine.validate(create_proposal()) is None

    @pytest.mark.parametrize("overrides,reason", [
        ({"state": ProposalState.DEFEATED}, "state is defeated"),
        ({"end_time": NOW - 1}, "voting period has ended"),
        ({"executed": True}, "already executed or cancelled"),
        ({"description": "short"}, "insufficient description"),
        ({"target_asset": "0x" + "0" * 40}, "invalid asset address"),
        ({"amount": "lots"}, "invalid amount"),
        ({"votes_for": "-1"}, "invalid voting data"),
        ({"amount": "0"}, "outside"),
    ])
    def test_rejections(self, overrides, reason):
        """Test each validation rule produces a non-evaluated decision."""
        decision = self.engine.evaluate(create_proposal(**overrides))
        assert not decision.should_evaluate
        assert decision.choice is VoteChoice.ABSTAIN
        assert decision.reasoning.startswith("Proposal failed basic validation")
        assert reason in decision.reasoning

    def test_large_non_stable_out_of_band(self):
        """Test a 50000 non-stable amount exceeds the conservative band."""
        decision = self.engine.evaluate(create_proposal(target_asset=WBTC, amount="50000",
                                                        description="Invest in WBTC for growth"))
        assert not decision.should_evaluate

    def test_large_stable_in_band(self):
        decision = self.engine.evaluate(create_proposal(amount="400000"))
        assert decision.should_evaluate


class TestRejectionsAcrossPolicies:
    """Tests that state and amount rejections hold for every policy and market."""

    BULLISH = dict(risk=0.1, rebalance=True, WBTC=("buy", 0.95), USDC=("buy", 0.95))

    @pytest.mark.parametrize("policy", ["conservative", "aggressive"])
    @pytest.mark.parametrize("state", [
        ProposalState.PENDING,
        ProposalState.SUCCEEDED,
        ProposalState.DEFEATED,
        ProposalState.QUEUED,
        ProposalState.EXECUTED,
        ProposalState.CANCELLED,
    ])
    def test_inactive_states_rejected(self, policy, state):
        engine = DecisionEngine(policy, clock=lambda: NOW)
        decision = engine.evaluate(create_proposal(state=state), create_market(**self.BULLISH))
        assert not decision.should_evaluate
        assert f"state is {state.value}" in decision.reasoning

    @pytest.mark.parametrize("policy,asset,amount,in_band", [
        ("conservative", WBTC, "0.005", False),
        ("conservative", WBTC, "0.01", True),
        ("conservative", WBTC, "10000", True),
        ("conservative", WBTC, "10000.01", False),
        ("conservative", WBTC, "50000", False),
        ("conservative", USDC, "0.0005", False),
        ("conservative", USDC, "500000", True),
        ("conservative", USDC, "500001", False),
        ("aggressive", WBTC, "0.005", False),
        ("aggressive", WBTC, "50000", True),
        ("aggressive", WBTC, "100000", True),
        ("aggressive", WBTC, "100000.5", False),
        ("aggressive", WBTC, "250000", False),
        ("aggressive", USDC, "0.0005", False),
        ("aggressive", USDC, "500000", True),
        ("aggressive", USDC, "500001", False),
    ])
    def test_amount_bands(self, policy, asset, amount, in_band):
        engine = DecisionEngine(policy, clock=lambda: NOW)
        proposal = create_proposal(target_asset=asset, amount=amount,
                                   description="Invest treasury funds into the asset")
        assert engine.evaluate(proposal).should_evaluate is in_band
        if not in_band:
            assert "outside" in engine.evaluate(proposal).reasoning

    @pytest.mark.parametrize("policy,amount", [
        ("conservative", "50000"),
        ("aggressive", "250000"),
    ])
    def test_out_of_band_ignores_market_and_votes(self, policy, amount):
        """Test a bullish market and overwhelming support cannot rescue an out-of-band amount."""
        engine = DecisionEngine(policy, clock=lambda: NOW)
        proposal = create_proposal(target_asset=WBTC, amount=amount,
                                   description="Invest in WBTC for growth",
                                   votes_for="5000", votes_against="0")
        for market in (None, create_market(**self.BULLISH)):
            decision = engine.evaluate(proposal, market)
            assert not decision.should_evaluate
            assert decision.choice is VoteChoice.ABSTAIN
            assert "outside" in decision.reasoning


# ============================================================================
# ANALYSIS TESTS
# ============================================================================

class TestAnalysis:
    """Tests for the engine's scoring helpers."""

    def test_risk_score_components(self):
        proposal = create_proposal(target_asset=WBTC)
        assert DecisionEngine.risk_score(proposal, Decimal(500), None) == pytest.approx(0.6)
        assert DecisionEngine.risk_score(proposal, Decimal(5000), None) == pytest.approx(0.8)

    def test_risk_score_market_and_failing_support(self):
        proposal = create_proposal(kind=ProposalKind.DIVEST, votes_for="1", votes_against="9")
        market = create_market(risk=1.0)
        # 0.5 - 0.1 (small) - 0.1 (divest) + 0.3 (market) + 0.2 (failing)
        assert DecisionEngine.risk_score(proposal, Decimal(5), market) == pytest.approx(0.8)

    def test_risk_score_clamped(self):
        proposal = create_proposal(votes_for="1", votes_against="9")
        assert DecisionEngine.risk_score(proposal, Decimal(5000), create_market(risk=1.0)) == 1.0

    @pytest.mark.parametrize("votes,activity", [
        ("50", "low"), ("100", "low"), ("101", "medium"), ("1001", "high"),
    ])
    def test_voting_activity(self, votes, activity):
        assert DecisionEngine.voting_activity(Decimal(votes)) == activity

    def test_last_minute(self):
        proposal = create_proposal(start_time=NOW - 9000, end_time=NOW + 500)
        assert DecisionEngine.is_last_minute(proposal, NOW)
        assert not DecisionEngine.is_last_minute(create_proposal(), NOW)

    def test_last_minute_unknown_start(self):
        proposal = create_proposal(start_time=0, end_time=NOW + 10)
        assert not DecisionEngine.is_last_minute(proposal, NOW)

    def test_market_aligned(self):
        engine = DecisionEngine()
        invest = create_proposal()
        assert engine.market_aligned(invest, None)
        assert engine.market_aligned(invest, create_market())
        assert engine.market_aligned(invest, create_market(USDC=("buy", 0.8)))
        assert not engine.market_aligned(invest, create_market(USDC=("sell", 0.8)))
        divest = create_proposal(kind=ProposalKind.DIVEST)
        assert engine.market_aligned(divest, create_market(USDC=("sell", 0.8)))


# ============================================================================
# CONSERVATIVE POLICY TESTS
# ============================================================================

class TestConservative:
    """Tests for the conservative policy."""

    def setup_method(self):
        self.engine = DecisionEngine("conservative", clock=lambda: NOW)

    def test_stable_investment_supported(self):
        """Test a 2500 stablecoin investment is supported with 0.8 confidence."""
        decision = self.engine.evaluate(create_proposal())
        assert decision.should_evaluate
        assert decision.support
        assert decision.choice is VoteChoice.SUPPORT
        assert decision.confidence == pytest.approx(0.8)
        assert "stable-asset investment" in decision.reasoning
        assert decision.policy == "conservative"

    def test_stable_by_description(self):
        """Test an unknown address mentioning USDC counts as stable."""
        decision = self.engine.evaluate(create_proposal(target_asset=UNKNOWN))
        assert decision.support

    def test_risky_growth_investment_opposed(self):
        decision = self.engine.evaluate(create_proposal(
            target_asset=WBTC, amount="500", description="Invest 500 into WBTC position",
        ))
        assert decision.choice is VoteChoice.OPPOSE
        assert "risk score" in decision.reasoning.lower()

    def test_divest_with_consensus(self):
        decision = self.engine.evaluate(create_proposal(
            kind=ProposalKind.DIVEST, target_asset=WBTC, amount="5",
            description="Divest a small WBTC position", votes_for="80", votes_against="20",
        ))
        assert decision.support
        assert decision.confidence == pytest.approx(0.6)

    def test_divest_without_consensus(self):
        decision = self.engine.evaluate(create_proposal(
            kind=ProposalKind.DIVEST, target_asset=WBTC, amount="5",
            description="Divest a small WBTC position",
        ))
        assert not decision.support
        assert decision.confidence == pytest.approx(0.4)

    def test_high_activity_majority(self):
        decision = self.engine.evaluate(create_proposal(votes_for="1500", votes_against="500"))
        assert decision.confidence == pytest.approx(0.9)
        assert "aligned with voting majority" in decision.reasoning

    def test_high_activity_against_majority(self):
        decision = self.engine.evaluate(create_proposal(votes_for="500", votes_against="1500"))
        assert decision.support
        assert decision.confidence == pytest.approx(0.7)
        assert "against voting majority" in decision.reasoning

    def test_last_minute_dampens(self):
        decision = self.engine.evaluate(create_proposal(start_time=NOW - 9000, end_time=NOW + 500))
        assert decision.confidence == pytest.approx(0.64)
        assert "last-minute" in decision.reasoning

    def test_min_confidence_abstains(self):
        engine = DecisionEngine("conservative", min_confidence=0.5, clock=lambda: NOW)
        decision = engine.evaluate(create_proposal(
            kind=ProposalKind.DIVEST, target_asset=WBTC, amount="5",
            description="Divest a small WBTC position",
        ))
        assert decision.should_evaluate
        assert decision.choice is VoteChoice.ABSTAIN


# ============================================================================
# AGGRESSIVE POLICY TESTS
# ============================================================================

class TestAggressive:
    """Tests for the aggressive policy."""

    def setup_method(self):
        self.engine = DecisionEngine("aggressive", clock=lambda: NOW)

    def test_growth_with_market_support(self):
        decision = self.engine.evaluate(
            create_proposal(target_asset=WBTC, amount="1000", description="Invest 1000 in WBTC"),
            market=create_market(risk=0.2, WBTC=("buy", 0.8)),
        )
        assert decision.support
        assert decision.confidence == pytest.approx(0.9)

    def test_oversized_position_opposed(self):
        decision = self.engine.evaluate(
            create_proposal(target_asset=WBTC, amount="6000", description="Invest 6000 in WBTC"),
        )
        assert decision.should_evaluate
        assert not decision.support

    def test_strong_trend(self):
        market = create_market(A=("buy", 0.8), B=("buy", 0.8), C=("buy", 0.9), D=("sell", 0.8))
        assert AggressivePolicy.strong_trend(market)
        assert not AggressivePolicy.strong_trend(create_market(A=("buy", 0.8), B=("sell", 0.8)))

    def test_volatility_opportunity(self):
        market = create_market(risk=0.5, A=("buy", 0.8), B=("sell", 0.7))
        assert AggressivePolicy.volatility_opportunity(market)
        assert not AggressivePolicy.volatility_opportunity(None)
        assert not AggressivePolicy.volatility_opportunity(create_market(risk=0.9, A=("buy", 0.8)))

    def test_rebalance_on_market_signal(self):
        decision = self.engine.evaluate(
            create_proposal(kind=ProposalKind.REBALANCE, amount="100",
                            description="Rebalance USDC reserves"),
            market=create_market(risk=0.1, rebalance=True),
        )
        assert decision.support
        assert decision.confidence == pytest.approx(0.8)


# ============================================================================
# FAILURE TESTS
# ============================================================================

class TestAnalysisFailure:
    """Tests that evaluate never raises."""

    def test_policy_error_becomes_decision(self):
        engine = DecisionEngine("exploding", clock=lambda: NOW)
        decision = engine.evaluate(create_proposal())
        assert not decision.should_evaluate
        assert "Analysis failed" in decision.reasoning
        assert "model offline" in decision.reasoning
