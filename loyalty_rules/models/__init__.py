from loyalty_rules.models.rule import RuleDocument, RuleUsageCounter
