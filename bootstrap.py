import argparse
import logging

from studio_roster.db import Base, SessionLocal, engine
from studio_roster.services.bootstrap_service import prime_schedules, run_bootstrap
from studio_roster.services.business_service import list_active_business_ids


logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')
logger = logging.getLogger('bootstrap')


def main(argv=None):
    parser = argparse.ArgumentParser(description='Create tables, seed the first studio and optionally prime schedules.')
    parser.add_argument('--slug', help='slug of the studio to seed (defaults to BOOTSTRAP_BUSINESS_SLUG)')
    parser.add_argument(
        '--prime-days',
        type=int,
        default=0,
        help='materialize this many days of class instances for every active studio',
    )
    args = parser.parse_args(argv)

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        result = run_bootstrap(db, slug=args.slug)
        if result.get('ran'):
            logger.info('Seeded studio business_id=%s slug=%s', result['business_id'], result['slug'])
        else:
            logger.info('Bootstrap skipped reason=%s', result.get('reason'))
        logger.info('Active studios: %s', len(list_active_business_ids(db)))
        if args.prime_days > 0:
            for slug, summary in prime_schedules(db, days=args.prime_days).items():
                logger.info(
                    'Primed schedule slug=%s created=%s existing=%s failed=%s',
                    slug,
                    summary['created'],
                    summary['existing'],
                    summary['failed'],
                )
    finally:
        db.close()


if __name__ == '__main__':
    main()
