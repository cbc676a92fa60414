#!/usr/bin/env python3

import argparse
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from ads_detector.config import DetectorConfig, default_config, get_env_threads, logging_config
from ads_detector.exceptions import AdsDetectorError, ConfigurationError
from ads_detector.logo_detector import LogoDetector
from ads_detector.results import dumps_payload, write_result_json
from ads_detector.utils import setup_logging


logger = logging.getLogger('ads_detector.main')


def run_analysis(config: DetectorConfig, frame_source=None, playlist_loader=None) -> Dict[str, Any]:
    """
    Lance une détection complète et écrit le document JSON.

    Args:
        config: Paramètres du job
        frame_source: Fabrique de sessions de décodage (OpenCV par défaut)
        playlist_loader: Fonction (locator, timeout) -> Playlist

    Returns:
        Document JSON sous forme de dictionnaire
    """
    detector = LogoDetector(config, frame_source=frame_source, playlist_loader=playlist_loader)
    result = detector.analyze()
    payload = detector.to_payload(result)
    write_result_json(payload, config.output_path)
    return payload


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ads-detector',
        description='Détecteur de publicités HLS basé sur l\'absence du logo de la chaîne')
    parser.add_argument('locator', nargs='?', help='URL ou fichier m3u8 (équivalent à --m3u8)')
    parser.add_argument('--m3u8', help='URL ou fichier m3u8 à analyser')

    corner = parser.add_mutually_exclusive_group()
    for index, flag in enumerate(default_config.CORNER_FLAGS):
        corner.add_argument(f'--{flag}', dest='corner_index', action='store_const', const=index,
                            help=f'Logo dans le coin {default_config.CORNER_NAMES[index]}')

    parser.add_argument('--roi', type=float, default=0.15,
                        help='Côté de la ROI en fraction de la largeur, ou en pourcentage si > 1 (défaut: 0.15)')
    parser.add_argument('--every-sec', '--interval', dest='every_sec', type=float, default=5.0,
                        help='Intervalle d\'échantillonnage en secondes (défaut: 5)')
    parser.add_argument('--k', type=int, default=2, help='Nombre de clusters k-means (défaut: 2)')
    parser.add_argument('--min-ad-sec', type=float, default=60.0,
                        help='Durée minimum d\'une publicité en secondes (défaut: 60)')
    parser.add_argument('--threads', type=int, default=None,
                        help='Nombre de workers (défaut: nombre de coeurs)')
    parser.add_argument('--output', default=default_config.OUTPUT_PATH,
                        help=f'Fichier JSON de sortie (défaut: {default_config.OUTPUT_PATH})')

    strategy = parser.add_argument_group('stratégie de classification')
    strategy.add_argument('--strategy', choices=['distance', 'dbscan', 'lof', 'knn', 'template'],
                          help='Stratégie (défaut: distance)')
    strategy.add_argument('--outlier', action='store_true', help='Détection d\'outliers (voir --outlier-mode)')
    strategy.add_argument('--outlier-mode', choices=['dbscan', 'lof', 'knn'], default='dbscan',
                          help='Mode outlier (défaut: dbscan)')
    strategy.add_argument('--tokayo', action='store_true', help='Mode template (médiane pixel + NCC)')
    strategy.add_argument('--smooth', type=int, default=3, help='Fenêtre de lissage des distances (défaut: 3)')
    strategy.add_argument('--enter-mult', type=float, default=1.25, help='Multiplicateur du seuil d\'entrée')
    strategy.add_argument('--exit-mult', type=float, default=1.0, help='Multiplicateur du seuil de sortie')
    strategy.add_argument('--enter-n', type=int, default=1, help='Échantillons absents consécutifs pour entrer')
    strategy.add_argument('--exit-n', type=int, default=1, help='Échantillons présents consécutifs pour sortir')
    strategy.add_argument('--dbscan-eps', type=float, default=0.0, help='Epsilon DBSCAN (0 = auto)')
    strategy.add_argument('--dbscan-minpts', type=int, default=5, help='minPts DBSCAN')
    strategy.add_argument('--lof-k', type=int, default=10, help='Voisins LOF')
    strategy.add_argument('--lof-th', type=float, default=1.6, help='Seuil LOF')
    strategy.add_argument('--knn-k', type=int, default=10, help='Voisins KNN')
    strategy.add_argument('--knn-q', '--knn-quantile', dest='knn_q', type=float, default=0.95,
                          help='Quantile du seuil KNN')
    strategy.add_argument('--tokayo-th', type=float, default=0.5, help='Seuil NCC (0 = auto)')

    refine = parser.add_argument_group('affinement')
    refine.add_argument('--refine-step-sec', type=float, default=5.0, help='Pas de l\'affinement (défaut: 5)')
    refine.add_argument('--no-refine', action='store_true', help='Désactive l\'affinement des bornes')

    parser.add_argument('--debug', action='store_true', help='Logs détaillés et capture des ROIs')
    parser.add_argument('--quiet', action='store_true', help='Seulement les avertissements et erreurs')
    parser.add_argument('--log-file', help='Fichier de log optionnel')
    return parser


def resolve_strategy(args: argparse.Namespace) -> str:
    if args.tokayo and args.outlier:
        raise ConfigurationError("--tokayo et --outlier sont mutuellement exclusifs")
    if args.strategy:
        return args.strategy
    if args.tokayo:
        return 'template'
    if args.outlier:
        return args.outlier_mode
    return 'distance'


def config_from_args(args: argparse.Namespace) -> DetectorConfig:
    """Convertit les arguments de la ligne de commande en configuration validée."""
    roi = args.roi / 100.0 if args.roi > 1.0 else args.roi
    threads = args.threads if args.threads is not None else get_env_threads(0)
    config = DetectorConfig(
        m3u8=args.m3u8 or args.locator or '',
        corner_index=args.corner_index,
        output_path=args.output,
        sample_every_sec=args.every_sec,
        roi_width_pct=roi,
        k=args.k,
        min_ad_sec=args.min_ad_sec,
        threads=threads,
        strategy=resolve_strategy(args),
        smooth_window=args.smooth,
        enter_mult=args.enter_mult,
        exit_mult=args.exit_mult,
        enter_consecutive=args.enter_n,
        exit_consecutive=args.exit_n,
        dbscan_eps=args.dbscan_eps,
        dbscan_min_pts=args.dbscan_minpts,
        lof_k=args.lof_k,
        lof_threshold=args.lof_th,
        knn_k=args.knn_k,
        knn_quantile=args.knn_q,
        template_threshold=args.tokayo_th,
        refine=not args.no_refine,
        refine_step_sec=args.refine_step_sec,
        debug=args.debug,
        quiet=args.quiet,
    )
    return config.validate()


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    level = os.environ.get(default_config.ENV_LOG_LEVEL, logging_config.LOG_LEVEL)
    if args.debug:
        level = 'DEBUG'
    if args.quiet:
        level = 'WARNING'
    setup_logging(level, args.log_file)

    try:
        config = config_from_args(args)
        payload = run_analysis(config)
    except AdsDetectorError as e:
        logger.error(f"❌ Erreur: {e}")
        return 1
    except Exception as e:
        logger.error(f"❌ Erreur inattendue: {e}", exc_info=True)
        return 1

    # Le JSON est toujours écrit sur stdout, même avec --quiet
    sys.stdout.write(dumps_payload(payload))
    sys.stdout.flush()
    logger.info(f"🎯 Fin. Publicités trouvées: {len(payload['ads'])}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
