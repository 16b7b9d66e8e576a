"""
Rules package.

Defines the rule model, the action matcher, the process-wide rule catalog
and the rule sources used by the Points service.

Modules of interest:
- models: Data classes for rules, conditions, outcomes and caps, plus the
  pydantic documents rules files are parsed into.
- matcher: Action-type predicate over a rule's conditions.
- catalog: Read-copy-update mapping of rule name to definition.
- source: Rule sources (JSON file).
"""
