# Services package init
"""
CareBridge Backend — Services Layer
=====================================

Pipeline:
    MatchingService ──drafts──▶ ContractService ──derives──▶ TransactionService
                                      │
                          OtpChannel ─┤─ LedgerService (settlement)
                                      │
                               DisputeService (against transactions)

Collaborators:
    - ProfileResolver / NurseAvailability: identity store and nurse pool
    - PricingResolver: tier revenue split
    - RedisKeyValueStore: OTP storage with TTL
    - ResendEmailSender: OTP delivery
    - Web3LedgerService: token balance, transfers, settlement record
    - MockPaymentGateway: bank payments and refunds

Each service takes its collaborators in the constructor, defaulting to the
module-level singletons, so tests can inject fakes.
"""
