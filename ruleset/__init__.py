"""
ruleset package - Domain Rule-Set Builder

Modules:
    rules: Rule model and line normalization
    expander: Recursive include expansion for domain-list-community files
    cleaner: Attribute-based rule filtering
    setops: Case-insensitive dedup, difference, reservation and pruning
    validator: Domain syntax validation and rule classification
    emitter: Rule-set document emission (text -> JSON)
    sources: Extract domains from dnsmasq, ad-block, hosts and custom lists
    pipeline: Main processing pipeline
    compiler: Compile JSON rule-sets with an external binary compiler
    publisher: Prepare the publication layout
"""

__version__ = "1.0.0"
